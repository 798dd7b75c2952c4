"""Scalar data types: text, numbers and booleans."""

import re

from pydantic import Field, field_validator, model_validator

from cargo_db.schema.structure import ScalarField, Structure, StructureArgs
from cargo_db.table.builder import Field as Column
from cargo_db.types.base import ColumnArgs, Constraints, DataType


class TextPayload(Constraints):
    min: int | None = Field(default=None, ge=0)
    max: int | None = Field(default=None, ge=0)
    regex: str | None = None

    @field_validator("regex")
    @classmethod
    def _compiles(cls, value: str | None) -> str | None:
        if value is not None:
            try:
                re.compile(value)
            except re.error as e:
                raise ValueError(f"invalid regular expression: {e}") from e
        return value

    @model_validator(mode="after")
    def _ordered(self) -> "TextPayload":
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("min must not exceed max")
        return self


class NumberPayload(Constraints):
    min: float | None = None
    max: float | None = None

    @model_validator(mode="after")
    def _ordered(self) -> "NumberPayload":
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("min must not exceed max")
        return self


class ScalarType(DataType):
    """One column holding one JSON leaf."""

    kind = "string"
    column_type = "varchar"

    def _column(self, args: ColumnArgs) -> Column:
        column = args.table.column(args.name, self.column_type)
        column.nullable(not args.constraints.get("required", False))
        if args.constraints.get("unique"):
            column.unique()
        return column

    def generate_columns(self, args: ColumnArgs) -> None:
        self._column(args)

    def generate_structure(self, args: StructureArgs) -> Structure:
        return Structure(ScalarField(self.kind, f"{args.alias}.{args.name}"))


class ShortTextType(ScalarType):
    name = "shortText"
    payload_model = TextPayload

    def generate_columns(self, args: ColumnArgs) -> None:
        column = self._column(args)
        payload = self.payload(args.constraints)
        if payload.min is not None:
            column.length("ge", payload.min)
        if payload.max is not None:
            column.length("le", payload.max)
        if payload.regex is not None:
            column.regex(payload.regex)


class LongTextType(ShortTextType):
    name = "longText"
    column_type = "text"


class IntegerType(ScalarType):
    name = "integer"
    kind = "number"
    column_type = "integer"
    payload_model = NumberPayload

    def generate_columns(self, args: ColumnArgs) -> None:
        payload = self.payload(args.constraints)
        self._column(args).in_range(payload.min, payload.max)


class FloatType(IntegerType):
    name = "float"
    column_type = "float"


class DoubleType(IntegerType):
    name = "double"
    column_type = "double"


class BooleanType(ScalarType):
    name = "boolean"
    kind = "boolean"
    column_type = "boolean"
