from __future__ import annotations

from dataclasses import dataclass

from graphql import GraphQLError, GraphQLSchema, build_schema, validate_schema

from driftgate.core.models import SchemaArtifact
from driftgate.utils.diagnostics import SchemaBuildError


@dataclass(frozen=True)
class ExecutableSchema:
    """A built GraphQL schema together with the artifact it was built from."""

    schema: GraphQLSchema
    artifact: SchemaArtifact


class GraphQLSchemaBuilder:
    """Builds an executable GraphQL schema from SDL type definitions."""

    def __init__(self, assume_valid_sdl: bool = False) -> None:
        self.assume_valid_sdl = assume_valid_sdl

    def build(self, artifact: SchemaArtifact) -> ExecutableSchema:
        if not artifact.content.strip():
            raise SchemaBuildError("Schema definition is empty", source=artifact.source, artifact=artifact)

        try:
            schema = build_schema(artifact.content, assume_valid_sdl=self.assume_valid_sdl)
        except GraphQLError as exc:
            raise SchemaBuildError(
                f"Invalid type definitions: {exc.message}",
                source=artifact.source,
                artifact=artifact,
            ) from exc
        except TypeError as exc:
            # build_schema raises TypeError for SDL that parses but yields an invalid schema.
            raise SchemaBuildError(f"Invalid schema: {exc}", source=artifact.source, artifact=artifact) from exc

        if schema.query_type is None:
            raise SchemaBuildError("Schema defines no Query type", source=artifact.source, artifact=artifact)

        errors = validate_schema(schema)
        if errors:
            messages = "; ".join(error.message for error in errors)
            raise SchemaBuildError(f"Invalid schema: {messages}", source=artifact.source, artifact=artifact)

        return ExecutableSchema(schema=schema, artifact=artifact)
