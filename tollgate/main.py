import argparse
import getpass
import logging
import os
import re
import sys
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional, Tuple

# --- PATH FIX ---
# Ensures we can import from 'tollgate' regardless of where the script is run
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
# ----------------

from rich.console import Console

from tollgate.adapters.kube import KubeAdapter, current_namespace, load_kube_config
from tollgate.config import load_config
from tollgate.core.errors import KubeAPIError, TollgateError
from tollgate.models.request import AccessRequest, RequestKind
from tollgate.ui.printer import (
    print_access_ready,
    print_banner,
    print_conditions,
    print_ok,
    print_step,
)
from tollgate.validators import validate_namespace, validate_request_name_prefix, validate_wait_time

logger = logging.getLogger("tollgate.cli")

DEFAULT_WAIT_TIME = "10s"
POLL_INTERVAL_SECONDS = 1.0


@dataclass(frozen=True)
class CreateRequestOptions:
    """Everything the create command needs, validated once up front."""
    template: str
    namespace: str
    target_pod: str = ""
    duration: str = ""
    request_name_prefix: str = "unknown"
    wait_time: timedelta = timedelta(seconds=10)
    poll_interval: float = POLL_INTERVAL_SECONDS


def _default_request_name_prefix() -> str:
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        return "unknown"
    return re.sub(r'[^a-z0-9-]', '-', user.lower()) or "unknown"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tollgate", description="Tollgate: short-lived cluster access requests")
    parser.add_argument("--kubeconfig", help="Path to a kubeconfig file (defaults to in-cluster, then ~/.kube/config)")
    parser.add_argument("--debug", action="store_true", help="Enable verbose logging")

    commands = parser.add_subparsers(dest="command", required=True)
    create = commands.add_parser("create", help="Create access request resources")
    kinds = create.add_subparsers(dest="kind", required=True)

    exec_access = kinds.add_parser(
        "exec-access",
        aliases=["ExecAccessRequest", "execaccessrequest", "execaccessrequests"],
        help="Create an ExecAccessRequest",
        description=(
            "By default an ExecAccessRequest picks a target pod for you. "
            "Use --target-pod to ask for a specific one."
        ),
    )
    exec_access.add_argument("-t", "--template", required=True, help="Name of the ExecAccessTemplate to request access from")
    exec_access.add_argument("-p", "--target-pod", default="", help="Optional name of a specific target pod to request access for")
    exec_access.add_argument(
        "-D", "--duration", default="",
        help="Duration for the access request to be valid. Valid time units are: ns, us, ms, s, m, h.",
    )
    exec_access.add_argument(
        "-N", "--request-name", default=_default_request_name_prefix(),
        help="Prefix name to use when creating the ExecAccessRequest objects",
    )
    exec_access.add_argument("-w", "--wait-time", default=DEFAULT_WAIT_TIME, help="How long to wait for the request to become ready")
    exec_access.add_argument("-n", "--namespace", help="Namespace of the template (defaults to the current context's)")
    return parser


def parse_options(args: argparse.Namespace, console: Console) -> CreateRequestOptions:
    """
    Static validation of the inputs.

    Raises:
        ValueError: On the first invalid flag
    """
    print_step(console, "Validating --request-name prefix")
    prefix = validate_request_name_prefix(args.request_name)
    print_ok(console)

    print_step(console, "Validating --wait-time")
    wait_time = validate_wait_time(args.wait_time)
    print_ok(console)

    namespace = validate_namespace(args.namespace or current_namespace(args.kubeconfig))

    return CreateRequestOptions(
        template=args.template,
        namespace=namespace,
        target_pod=args.target_pod or "",
        duration=args.duration or "",
        request_name_prefix=prefix,
        wait_time=wait_time,
    )


def wait_for_ready(
    fetch: Callable[[], AccessRequest],
    wait_time: timedelta,
    poll_interval: float = POLL_INTERVAL_SECONDS,
    on_poll: Optional[Callable[[], None]] = None,
    on_error: Optional[Callable[[Exception], None]] = None,
    clock: Callable[[], float] = time.monotonic,
    cancel: Optional[threading.Event] = None,
) -> Tuple[bool, Optional[AccessRequest]]:
    """
    Polls until the request reports ResourcesReady=True or one deadline
    (computed once, on a monotonic clock) passes.

    Read errors are reported through on_error and polling continues. Setting
    `cancel` stops the wait early.

    Returns:
        (ready, last successfully read copy of the request)
    """
    cancel = cancel or threading.Event()
    deadline = clock() + wait_time.total_seconds()
    last: Optional[AccessRequest] = None

    while True:
        try:
            last = fetch()
        except TollgateError as e:
            if on_error:
                on_error(e)
        else:
            if last.status.is_ready():
                return True, last

        remaining = deadline - clock()
        if remaining <= 0:
            return False, last

        if on_poll:
            on_poll()
        if cancel.wait(min(poll_interval, remaining)):
            return False, last


def create_exec_access_request(adapter: KubeAdapter, options: CreateRequestOptions, console: Console) -> int:
    """Creates the request and waits for it. Returns the process exit code."""
    kind = RequestKind.EXEC_ACCESS

    console.print("Initiating Access Request...")
    console.print(f"  Template Name: {options.template}")
    console.print(f"  Request Name Prefix: {options.request_name_prefix}")
    console.print(f"  Namespace: {options.namespace}\n")

    # 1. Verify the template exists
    print_step(console, f"Verifying Template {options.template} exists")
    try:
        adapter.get_template(kind, options.namespace, options.template)
    except KubeAPIError as e:
        console.print(f"\n[red]Error - Invalid --template name flag passed in:[/red]\n  {e}")
        return 1
    print_ok(console, "it does!")

    # 2. Create a dynamically named request
    spec = {"templateName": options.template}
    if options.duration:
        spec["duration"] = options.duration
    if options.target_pod:
        spec["targetPod"] = options.target_pod
    body = {
        "metadata": {"generateName": f"{options.request_name_prefix}-", "namespace": options.namespace},
        "spec": spec,
    }

    print_step(console, f"Creating {kind.value}")
    try:
        created = adapter.create_request(kind, options.namespace, body)
    except KubeAPIError as e:
        console.print(f"\n[red]Error - Creating {kind.value} failed:[/red]\n  {e}")
        return 1
    name = created["metadata"]["name"]
    print_ok(console, f"{name} created!")

    # 3. Wait until ready or out of time
    console.print(f"Waiting for {kind.value} to be ready", end="")
    ready, request = wait_for_ready(
        fetch=lambda: AccessRequest.from_object(kind, adapter.get_request(kind, options.namespace, name)),
        wait_time=options.wait_time,
        poll_interval=options.poll_interval,
        on_poll=lambda: console.print(".", end=""),
        on_error=lambda e: console.print(f"\nError updating request status: {e}"),
    )

    if ready:
        print_access_ready(console, request)
        return 0

    console.print(f"\n[red]Error - timed out waiting for {kind.value} to be ready[/red]")
    if request is not None:
        print_conditions(console, request)
    return 1


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    # Setup Logging
    log_level = logging.DEBUG if args.debug else logging.WARNING
    logging.basicConfig(level=log_level, format='%(asctime)s - %(levelname)s - %(message)s')

    console = Console(highlight=False)
    print_banner(console)

    # Validate inputs immediately (Fail Fast)
    try:
        options = parse_options(args, console)
    except ValueError as e:
        console.print("")
        parser.error(str(e))

    try:
        config = load_config()
        load_kube_config(args.kubeconfig or config.kubeconfig)
        adapter = KubeAdapter(api_group=config.api_group, api_version=config.api_version)
        sys.exit(create_exec_access_request(adapter, options, console))
    except KeyboardInterrupt:
        console.print("\nInterrupted.")
        sys.exit(130)
    except Exception:
        logger.exception("Unexpected System Failure")
        sys.exit(1)


if __name__ == "__main__":
    main()
