"""
planforge: oracle providers and shared provider API

File: src/planforge/providers/__init__.py

Purpose
- Oracle adapters (completion transport, scripted) behind one provider interface.

Functional requirements
- Must normalize replies into the compile/generate result schema.
"""

from planforge.providers.base import (
    BaseProvider,
    CompileRequest,
    CompileResult,
    GenerateRequest,
    GenerateResult,
    ProviderError,
    ProviderProtocol,
    ProviderResponseError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    SessionProvider,
)
from planforge.providers.call_log import CallLog, CallLogEntry, CallPhase
from planforge.providers.completion import CompletionProvider, Transport
from planforge.providers.response_parser import (
    compile_result_from_payload,
    generate_result_from_payload,
    parse_compile_response,
    parse_generate_response,
    parse_response_payload,
)
from planforge.providers.scripted import (
    OracleScript,
    ScriptedProvider,
    ScriptedSessionProvider,
    ScriptLoadError,
)

__all__ = [
    "BaseProvider",
    "CallLog",
    "CallLogEntry",
    "CallPhase",
    "CompileRequest",
    "CompileResult",
    "CompletionProvider",
    "GenerateRequest",
    "GenerateResult",
    "OracleScript",
    "ProviderError",
    "ProviderProtocol",
    "ProviderResponseError",
    "ProviderTimeoutError",
    "ProviderUnavailableError",
    "ScriptLoadError",
    "ScriptedProvider",
    "ScriptedSessionProvider",
    "SessionProvider",
    "Transport",
    "compile_result_from_payload",
    "generate_result_from_payload",
    "parse_compile_response",
    "parse_generate_response",
    "parse_response_payload",
]
