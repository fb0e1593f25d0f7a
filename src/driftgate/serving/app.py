import inspect
import logging
from typing import Any, Dict, Optional, Union

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from graphql import GraphQLError, GraphQLSchema, execute, parse, specified_rules, validate
from graphql.validation import NoSchemaIntrospectionCustomRule
from pydantic import BaseModel

from driftgate.core.models import ServerSettings
from driftgate.schema.builder import ExecutableSchema

logger = logging.getLogger(__name__)


class GraphQLRequest(BaseModel):
    """GraphQL-over-HTTP request body."""

    query: str
    variables: Optional[Dict[str, Any]] = None
    operationName: Optional[str] = None


def create_app(
    executable: Union[ExecutableSchema, GraphQLSchema],
    connection: Any,
    settings: ServerSettings,
    production: bool = False,
    generation_id: int = 0,
    root_value: Any = None,
) -> FastAPI:
    """
    Build the ASGI application serving one generation's schema.

    Resolvers receive ``{"connection": ..., "request": ...}`` as context value.
    Introspection queries are rejected in production.
    """
    schema = executable.schema if isinstance(executable, ExecutableSchema) else executable
    rules = list(specified_rules)
    if production:
        rules.append(NoSchemaIntrospectionCustomRule)

    app = FastAPI(title="Driftgate", docs_url=None, redoc_url=None, openapi_url=None)
    app.state.generation_id = generation_id

    @app.get("/healthz")
    async def healthz() -> Dict[str, Any]:
        return {"status": "ok", "generation": generation_id}

    @app.post(settings.graphql_path)
    async def graphql_endpoint(payload: GraphQLRequest, request: Request):
        logger.debug(
            "GraphQL request %s (generation %s): %s",
            payload.operationName or "<anonymous>",
            generation_id,
            payload.query,
        )

        try:
            document = parse(payload.query)
        except GraphQLError as exc:
            logger.info("Invalid request was received: %s", exc.message)
            return JSONResponse({"errors": [exc.formatted]}, status_code=400)

        validation_errors = validate(schema, document, rules)
        if validation_errors:
            logger.info("Invalid request was received: %s", "; ".join(e.message for e in validation_errors))
            return JSONResponse({"errors": [e.formatted for e in validation_errors]}, status_code=400)

        result = execute(
            schema,
            document,
            root_value=root_value,
            context_value={"connection": connection, "request": request},
            variable_values=payload.variables,
            operation_name=payload.operationName,
        )
        if inspect.isawaitable(result):
            result = await result

        body: Dict[str, Any] = {"data": result.data}
        if result.errors:
            for error in result.errors:
                if error.original_error is not None:
                    logger.error(
                        "Unexpected error processing request: %s",
                        error.message,
                        exc_info=error.original_error,
                    )
            body["errors"] = [error.formatted for error in result.errors]
        return body

    return app
