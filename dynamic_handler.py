"""Build live handler instances from distributed Python source text.

The denylist is a regex scan over the raw text. It guards against accidental
misuse by a trusted distributor and is not an isolation boundary.
"""

from __future__ import annotations

import builtins
import inspect
import logging
import re
from typing import Any, Dict, List, Tuple

from action_types import (
    ActionContext,
    BaseHandler,
    HandlerConfig,
    fail,
    implements_contract,
    item_name,
    ok,
)
from tabula.code_cipher import ENCRYPTED_PREFIX, CodeCipher

logger = logging.getLogger("tabula.loader")
dynamic_logger = logging.getLogger("tabula.handlers.dynamic")

CODE_EMPTY = "CODE_EMPTY"
CODE_DECRYPT_FAILED = "CODE_DECRYPT_FAILED"
CODE_UNSAFE = "CODE_UNSAFE"
CODE_COMPILE_FAILED = "CODE_COMPILE_FAILED"
CODE_NO_CLASS = "CODE_NO_CLASS"
HANDLER_CONSTRUCT_FAILED = "HANDLER_CONSTRUCT_FAILED"
HANDLER_CONTRACT_INVALID = "HANDLER_CONTRACT_INVALID"


class HandlerLoadError(ValueError):
    def __init__(self, code: str, message: str, detail: dict | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.detail = detail or {}


_DENYLIST: List[Tuple[str, str, re.Pattern]] = [
    (category, token, re.compile(pattern, re.MULTILINE))
    for category, token, pattern in [
        ("dynamic_eval", "eval", r"\beval\s*\("),
        ("dynamic_eval", "exec", r"\bexec\s*\("),
        ("dynamic_eval", "compile", r"\bcompile\s*\("),
        ("dynamic_eval", "__import__", r"__import__"),
        ("dynamic_eval", "importlib", r"\bimportlib\b"),
        ("dynamic_eval", "import", r"^\s*(?:import\s+\w|from\s+[\w.]+\s+import\b)"),
        ("scheduling", "threading", r"\bthreading\b"),
        ("scheduling", "multiprocessing", r"\bmultiprocessing\b"),
        ("scheduling", "asyncio", r"\basyncio\.(?:create_task|ensure_future|get_event_loop|new_event_loop|run|sleep)\b"),
        ("scheduling", "call_later", r"\bcall_(?:later|at|soon)\b"),
        ("scheduling", "run_in_executor", r"\brun_in_executor\b"),
        ("global_access", "globals", r"\bglobals\s*\("),
        ("global_access", "locals", r"\blocals\s*\("),
        ("global_access", "vars", r"\bvars\s*\("),
        ("global_access", "__builtins__", r"__builtins__"),
        ("global_access", "__globals__", r"__globals__"),
        ("global_access", "__subclasses__", r"__subclasses__"),
        ("global_access", "__code__", r"__code__"),
        ("storage", "open", r"\bopen\s*\("),
        ("storage", "pickle", r"\bpickle\b"),
        ("storage", "shelve", r"\bshelve\b"),
        ("storage", "sqlite3", r"\bsqlite3\b"),
        ("network", "socket", r"\bsocket\b"),
        ("network", "urllib", r"\burllib\b"),
        ("network", "httpx", r"\bhttpx\b"),
        ("network", "requests", r"\brequests\b"),
        ("network", "fetch", r"\bfetch\s*\("),
        ("process", "os", r"\bos\."),
        ("process", "sys", r"\bsys\."),
        ("process", "subprocess", r"\bsubprocess\b"),
        ("process", "getenv", r"\bgetenv\b"),
        ("process", "environ", r"\benviron\b"),
        ("location", "location", r"\blocation\."),
    ]
]

_SAFE_BUILTIN_NAMES = (
    "abs", "all", "any", "bool", "callable", "dict", "enumerate", "filter", "float",
    "hasattr", "int", "isinstance", "issubclass", "len", "list", "map", "max", "min",
    "object", "property", "range", "repr", "reversed", "round", "set", "sorted",
    "staticmethod", "classmethod", "str", "sum", "super", "tuple", "zip",
    "Exception", "KeyError", "NotImplementedError", "RuntimeError", "TypeError", "ValueError",
)


def _safe_builtins() -> Dict[str, Any]:
    allowed = {name: getattr(builtins, name) for name in _SAFE_BUILTIN_NAMES if hasattr(builtins, name)}
    allowed["__build_class__"] = builtins.__build_class__
    return allowed


def _log(message: str, *args: Any) -> None:
    dynamic_logger.info(message, *args)


def scan_code(code: str) -> list[dict]:
    """Return one finding per denylisted construct present in ``code``."""
    findings = []
    for category, token, pattern in _DENYLIST:
        match = pattern.search(code)
        if match:
            line = code.count("\n", 0, match.start()) + 1
            findings.append({"category": category, "token": token, "line": line})
    return findings


def _plaintext(action_type: str, code: Any, cipher: CodeCipher | None) -> str:
    if not isinstance(code, str) or not code.strip():
        raise HandlerLoadError(CODE_EMPTY, f"No code supplied for handler '{action_type}'")
    if not code.startswith(ENCRYPTED_PREFIX):
        return code
    payload = code[len(ENCRYPTED_PREFIX):]
    cipher = cipher or CodeCipher.from_env()
    if not cipher.is_encrypted(payload):
        raise HandlerLoadError(CODE_DECRYPT_FAILED, f"Encrypted code for '{action_type}' is malformed")
    text = cipher.decrypt(payload)
    if not text.strip():
        raise HandlerLoadError(CODE_DECRYPT_FAILED, f"Failed to decrypt code for handler '{action_type}'")
    return text


def _namespace(action_type: str) -> Dict[str, Any]:
    return {
        "__builtins__": _safe_builtins(),
        "__name__": f"tabula_dynamic_{action_type}",
        "BaseHandler": BaseHandler,
        "ActionContext": ActionContext,
        "ok": ok,
        "fail": fail,
        "item_name": item_name,
        "log": _log,
        "logger": dynamic_logger,
    }


def _handler_class(namespace: Dict[str, Any], action_type: str) -> Any:
    explicit = namespace.get("handler_class")
    if explicit is not None:
        if not inspect.isclass(explicit):
            raise HandlerLoadError(CODE_NO_CLASS, f"handler_class for '{action_type}' is not a class")
        return explicit
    builtin_names = set(_namespace(action_type))
    classes = [v for k, v in namespace.items() if inspect.isclass(v) and k not in builtin_names]
    if not classes:
        raise HandlerLoadError(CODE_NO_CLASS, f"Code for '{action_type}' does not define a handler class")
    return classes[-1]


def load_handler(
    action_type: str,
    code: Any,
    config: HandlerConfig | None = None,
    cipher: CodeCipher | None = None,
) -> Any:
    """Compile ``code``, instantiate its handler class and check the contract.

    Raises HandlerLoadError; never returns an object missing a contract member.
    """
    text = _plaintext(action_type, code, cipher)

    findings = scan_code(text)
    if findings:
        tokens = sorted({f["token"] for f in findings})
        logger.warning("handler_code_rejected type=%s tokens=%s", action_type, ",".join(tokens))
        raise HandlerLoadError(
            CODE_UNSAFE,
            f"Code for '{action_type}' contains disallowed constructs: {', '.join(tokens)}",
            {"findings": findings},
        )

    namespace = _namespace(action_type)
    try:
        exec(compile(text, f"<handler:{action_type}>", "exec"), namespace)
    except Exception as exc:
        raise HandlerLoadError(CODE_COMPILE_FAILED, f"Code for '{action_type}' failed to compile: {exc}") from exc

    cls = _handler_class(namespace, action_type)
    try:
        instance = cls(dict(config) if config else {"enabled": True})
    except Exception as exc:
        raise HandlerLoadError(HANDLER_CONSTRUCT_FAILED, f"Handler '{action_type}' could not be constructed: {exc}") from exc

    if not implements_contract(instance):
        raise HandlerLoadError(
            HANDLER_CONTRACT_INVALID,
            f"Handler '{action_type}' must implement execute, get_metadata and update_config",
        )

    metadata = instance.get_metadata()
    if not isinstance(metadata, dict):
        raise HandlerLoadError(HANDLER_CONTRACT_INVALID, f"Handler '{action_type}' returned invalid metadata")
    if metadata.get("type") != action_type:
        instance.update_config({"metadata": {**metadata, "type": action_type}})

    logger.info("handler_loaded type=%s class=%s", action_type, cls.__name__)
    return instance
