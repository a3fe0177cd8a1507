#!/usr/bin/env python3
"""Live exchange probe for a messaging backend.

Feeds one device credential through a real ``PushTokenBridge`` and reports
what the backend hands back:

1) read ``PUSHBRIDGE_*`` configuration (exchange URL, API key, app id),
2) deliver the hex credential given on the command line,
3) wait for the delivery token or the failure reason,
4) print the lifecycle outcome with fingerprints only.

Pass ``--show-token`` to print the full token value.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pushbridge import BridgeConfig, Failed, FailureReason, PushBridgeError, PushTokenBridge  # noqa: E402
from pushbridge.collaborators import CredentialSink  # noqa: E402

_LOG = logging.getLogger("exchange_probe")


class _StaticRegistrar:
    """Hands out the same credential on every registration attempt."""

    def __init__(self, credential: bytes) -> None:
        self._credential = credential

    def register(self, sink: CredentialSink) -> None:
        _LOG.debug("Delivering %d-byte credential", len(self._credential))
        sink.on_credential(self._credential)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Exchange a device credential for a push delivery token.",
    )
    parser.add_argument(
        "credential",
        help="Device credential as hex (e.g. the APNs device token).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Seconds to wait for a token.",
    )
    parser.add_argument(
        "--sandbox",
        action="store_true",
        help="Mark the credential as belonging to a development environment.",
    )
    parser.add_argument(
        "--show-token",
        action="store_true",
        help="Print the full token instead of its fingerprint.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


async def _probe(config: BridgeConfig, credential: bytes, timeout: float, show_token: bool) -> int:
    failures: list[tuple[FailureReason, str]] = []

    async with PushTokenBridge(config, registrar=_StaticRegistrar(credential)) as bridge:
        bridge.subscribe(lambda _token: None, on_failure=lambda reason, detail: failures.append((reason, detail)))
        bridge.start()
        token = await bridge.wait_for_token(timeout=timeout)
        state = bridge.state

    if token is not None:
        shown = token.value if show_token else token.fingerprint
        print(f"[probe] token          : {shown}")
        print(f"[probe] epoch          : {token.epoch}")
        print(f"[probe] issued_at      : {token.issued_at.isoformat()}")
        return 0

    if isinstance(state, Failed):
        print(f"[probe] failed         : {state.reason}", file=sys.stderr)
        if state.detail:
            print(f"[probe] detail         : {state.detail}", file=sys.stderr)
    else:
        print(f"[probe] no token after {timeout:.0f}s (phase={state.phase})", file=sys.stderr)
    if len(failures) > 1:
        print(f"[probe] failures seen  : {len(failures)}", file=sys.stderr)
    return 1


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        credential = bytes.fromhex(args.credential.replace(" ", ""))
    except ValueError:
        print(f"[probe] Not a hex credential: {args.credential!r}", file=sys.stderr)
        return 2

    try:
        config = BridgeConfig.from_env(**({"sandbox": True} if args.sandbox else {}))
        return asyncio.run(_probe(config, credential, args.timeout, args.show_token))
    except PushBridgeError as exc:
        print(f"[probe] {exc}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(_main())
