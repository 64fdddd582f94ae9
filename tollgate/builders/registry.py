from typing import Dict

from tollgate.builders.base import AccessBuilder
from tollgate.builders.exec_access import ExecAccessBuilder
from tollgate.models.request import RequestKind

# Exactly one builder per RequestKind.
BUILDERS: Dict[RequestKind, AccessBuilder] = {
    RequestKind.EXEC_ACCESS: ExecAccessBuilder(),
}


def get_builder(kind: RequestKind) -> AccessBuilder:
    return BUILDERS[kind]
