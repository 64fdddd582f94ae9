import hashlib
import logging
import os
import re
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional

import yaml

from tollgate.adapters.kube import DEFAULT_API_GROUP, DEFAULT_API_VERSION
from tollgate.core.engine import DEFAULT_REQUEUE_SECONDS
from tollgate.validators import validate_namespace

logger = logging.getLogger("tollgate.config")

CONFIG_PATH_ENV = "TOLLGATE_CONFIG"


@dataclass(frozen=True)
class OperatorConfig:
    """
    Operator settings, built once at startup and passed around explicitly.

    Attributes:
        namespace: Namespace to watch; None means cluster-wide.
        api_group: Group of the request/template custom resources.
        api_version: Version of the request/template custom resources.
        requeue_interval_seconds: Upper bound on the time between two passes
            over the same request. Also the expiry enforcement granularity.
        audit_dir: When set, audit events are also written here as JSON files.
        kubeconfig: Explicit kubeconfig path; empty means in-cluster first.
        fingerprint: SHA256 of the expanded config file, for the startup log.
    """
    namespace: Optional[str] = None
    api_group: str = DEFAULT_API_GROUP
    api_version: str = DEFAULT_API_VERSION
    requeue_interval_seconds: float = DEFAULT_REQUEUE_SECONDS
    audit_dir: Optional[str] = None
    kubeconfig: Optional[str] = None
    fingerprint: str = ""


def expand_env_vars(raw_yaml: str, environ: Optional[Mapping[str, str]] = None) -> str:
    """
    Replaces ${VAR_NAME} with the value from the environment.
    Raises an error if the variable is missing rather than running with a
    half-filled config.
    """
    environ = os.environ if environ is None else environ
    pattern = re.compile(r'\$\{([A-Z0-9_]+)\}')

    def replace_var(match):
        var_name = match.group(1)
        val = environ.get(var_name)
        if not val:
            raise ValueError(
                f"CRITICAL: Config references ${{{var_name}}}, but environment variable is missing."
            )
        return val

    return pattern.sub(replace_var, raw_yaml)


def _coerce_interval(value: Any) -> float:
    try:
        interval = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"requeue_interval_seconds must be a number, got: {value!r}")
    if interval <= 0:
        raise ValueError(f"requeue_interval_seconds must be positive, got: {interval}")
    return interval


def _from_mapping(data: Dict[str, Any], fingerprint: str = "") -> OperatorConfig:
    namespace = data.get("namespace") or None
    if namespace:
        validate_namespace(namespace)
    return OperatorConfig(
        namespace=namespace,
        api_group=data.get("api_group") or DEFAULT_API_GROUP,
        api_version=data.get("api_version") or DEFAULT_API_VERSION,
        requeue_interval_seconds=_coerce_interval(
            data.get("requeue_interval_seconds", DEFAULT_REQUEUE_SECONDS)
        ),
        audit_dir=data.get("audit_dir") or None,
        kubeconfig=data.get("kubeconfig") or None,
        fingerprint=fingerprint,
    )


def load_config(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> OperatorConfig:
    """
    Builds the operator config.

    Order of precedence (last wins): built-in defaults, the YAML file
    (path argument, else $TOLLGATE_CONFIG), then TOLLGATE_* variables.
    """
    environ = os.environ if environ is None else environ
    path = path or environ.get(CONFIG_PATH_ENV)

    data: Dict[str, Any] = {}
    fingerprint = ""
    if path:
        # 1. Read the raw text
        with open(path, 'r') as file:
            raw_content = file.read()

        # 2. Expand ${VAR} references before parsing
        expanded = expand_env_vars(raw_content, environ)

        # 3. Fingerprint the REAL content (post-expansion)
        fingerprint = hashlib.sha256(expanded.encode('utf-8')).hexdigest()

        # 4. Parse
        data = yaml.safe_load(expanded) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping at the top level")

    config = _from_mapping(data, fingerprint)

    overrides: Dict[str, Any] = {}
    if environ.get("TOLLGATE_NAMESPACE"):
        overrides["namespace"] = validate_namespace(environ["TOLLGATE_NAMESPACE"])
    if environ.get("TOLLGATE_REQUEUE_INTERVAL"):
        overrides["requeue_interval_seconds"] = _coerce_interval(environ["TOLLGATE_REQUEUE_INTERVAL"])
    if environ.get("TOLLGATE_AUDIT_DIR"):
        overrides["audit_dir"] = environ["TOLLGATE_AUDIT_DIR"]
    if environ.get("TOLLGATE_KUBECONFIG"):
        overrides["kubeconfig"] = environ["TOLLGATE_KUBECONFIG"]

    if overrides:
        config = replace(config, **overrides)

    logger.debug(f"Loaded config from {path or '<defaults>'} (fingerprint {fingerprint[:16] or '-'})")
    return config
