from logging import warning

from aiohttp.web_request import Request
from aiohttp.web_response import Response, json_response
from aiosqlite import IntegrityError
from orjson import JSONDecodeError, dumps, loads

import storage


def _json(data, status: int = 200) -> Response:
    return json_response(data=data, status=status, dumps=lambda x: dumps(x).decode())


async def _read_json(request: Request) -> dict:
    """Parses the request body, turning malformed JSON into a ValueError."""
    try:
        return await request.json(loads=loads)
    except JSONDecodeError as err:
        raise ValueError("Malformed JSON body") from err


async def _guarded(handler, *args) -> Response:
    """
    Runs a storage call and maps its failures to HTTP responses.

    ValueError is a rejected input (400), LookupError an unknown table (404)
    and IntegrityError a violated constraint (409).
    """
    try:
        return await handler(*args)
    except LookupError as er:
        return Response(status=404, text=str(er))
    except ValueError as er:
        return Response(status=400, text=str(er))
    except IntegrityError as er:
        warning("Constraint violation: %s", er)
        return Response(status=409, text="Constraint violation")


async def list_records_router(request: Request) -> Response:
    """
    Handles GET /{table}.
    Returns every record, or only those matching the query-string filters.
    """
    table = request.match_info["table"]

    async def handle():
        filters = dict(request.query)
        if filters:
            return _json(await storage.find_by(table, filters))
        return _json(await storage.find_all(table))

    return await _guarded(handle)


async def search_records_router(request: Request) -> Response:
    """
    Handles POST /{table}/search.
    Returns records matching the JSON criteria object in the body.
    """
    table = request.match_info["table"]

    async def handle():
        criteria = await _read_json(request)
        return _json(await storage.find_by(table, criteria))

    return await _guarded(handle)


async def get_record_router(request: Request) -> Response:
    """Handles GET /{table}/{record_id}."""
    table = request.match_info["table"]
    record_id = request.match_info["record_id"]

    async def handle():
        record = await storage.find_by_id(table, record_id)
        if record is None:
            return Response(status=404, text="Not found")
        return _json(record)

    return await _guarded(handle)


async def create_record_router(request: Request) -> Response:
    """Handles POST /{table}. Creates a record from the JSON body."""
    table = request.match_info["table"]

    async def handle():
        data = await _read_json(request)
        return _json(await storage.create(table, data), status=201)

    return await _guarded(handle)


async def update_record_router(request: Request) -> Response:
    """Handles PATCH /{table}/{record_id}. Updates the given fields."""
    table = request.match_info["table"]
    record_id = request.match_info["record_id"]

    async def handle():
        data = await _read_json(request)
        record = await storage.update(table, record_id, data)
        if record is None:
            return Response(status=404, text="Not found")
        return _json(record)

    return await _guarded(handle)


async def delete_record_router(request: Request) -> Response:
    """Handles DELETE /{table}/{record_id}."""
    table = request.match_info["table"]
    record_id = request.match_info["record_id"]

    async def handle():
        if not await storage.delete(table, record_id):
            return Response(status=404, text="Not found")
        return Response(status=204)

    return await _guarded(handle)


async def health_router(_request: Request) -> Response:
    """
    Handles GET /health.
    A simple health check endpoint.
    """
    return Response(text="HEALTHY")
