from __future__ import annotations

from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException, status
from pydantic import BaseModel, Field, field_validator

from tinybfc.compiler import (
    DEFAULT_ARRAY_SIZE,
    DEFAULT_STACK_SIZE,
    AssemblyProgram,
    BrainfuckCompiler,
    CompileError,
    UnmatchedClosingBracket,
    UnmatchedOpeningBracket,
)
from tinybfc.emulator import AssemblyEmulator, EmulationError

DEFAULT_MAX_STEPS = 1_000_000
# One character per byte in both directions, like ord()/chr().
BYTE_CODEC = "latin-1"


def _compile_error_detail(exc: CompileError) -> Dict[str, Any]:
    detail: Dict[str, Any] = {"error": type(exc).__name__, "message": str(exc)}
    if isinstance(exc, UnmatchedClosingBracket):
        detail["position"] = exc.position
    elif isinstance(exc, UnmatchedOpeningBracket):
        detail["positions"] = list(exc.positions)
        detail["count"] = exc.count
    return detail


def _compile(code: str, array_size: int, stack_size: int) -> AssemblyProgram:
    compiler = BrainfuckCompiler(array_size=array_size, stack_size=stack_size)
    try:
        return compiler.compile(code)
    except CompileError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=_compile_error_detail(exc),
        ) from exc


class CompileRequest(BaseModel):
    code: str = ""
    array_size: int = Field(default=DEFAULT_ARRAY_SIZE, ge=1)
    stack_size: int = Field(default=DEFAULT_STACK_SIZE, ge=1)


class CompileResponse(BaseModel):
    assembly: str
    lines: List[str]
    loop_count: int


class RunRequest(BaseModel):
    code: str = ""
    input: str = ""
    array_size: int = Field(default=DEFAULT_ARRAY_SIZE, ge=1)
    max_steps: int = Field(default=DEFAULT_MAX_STEPS, ge=1)

    @field_validator("input")
    @classmethod
    def validate_input(cls, value: str) -> str:
        try:
            value.encode(BYTE_CODEC)
        except UnicodeEncodeError as exc:
            raise ValueError("input must only contain characters U+0000 to U+00FF") from exc
        return value


class RunResponse(BaseModel):
    output: str
    exit_status: int
    steps: int


def create_app() -> FastAPI:
    app = FastAPI(title="tinybfc API", version="0.1.0")

    @app.post("/api/compile", response_model=CompileResponse)
    def compile_program(payload: CompileRequest) -> CompileResponse:
        program = _compile(payload.code, payload.array_size, payload.stack_size)
        loop_labels = program.loop_labels()
        return CompileResponse(
            assembly=program.text(),
            lines=list(program.lines),
            loop_count=len(loop_labels) // 2,
        )

    @app.post("/api/run", response_model=RunResponse)
    def run_program(payload: RunRequest) -> RunResponse:
        program = _compile(payload.code, payload.array_size, DEFAULT_STACK_SIZE)
        try:
            result = AssemblyEmulator().run(
                program,
                input_data=list(payload.input.encode(BYTE_CODEC)),
                max_steps=payload.max_steps,
            )
        except EmulationError as exc:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=str(exc),
            ) from exc
        return RunResponse(
            output=result.output.decode(BYTE_CODEC),
            exit_status=result.exit_status,
            steps=result.steps,
        )

    return app


__all__ = ["create_app"]
