"""Diagnose the serial link to a people counter: query it (or reset it) and show the raw exchange."""

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from people_counter_lib import protocol
from people_counter_lib.models import ResetScope
from people_counter_lib.transport import CounterTransport


async def diagnose_connection(args: argparse.Namespace) -> int:
    """Open the port, run the requested exchange(s) and print what came back."""
    transport = CounterTransport(
        port=args.port,
        baud=args.baud,
        response_timeout=args.timeout_ms / 1000.0,
        simulate=args.simulate,
    )

    print(f"\n=== Opening {args.port if not args.simulate else 'simulator'} ===")
    if not args.simulate and not await transport.open():
        print(f"*** COULD NOT OPEN {args.port} ({transport.last_fault.value}) ***")
        print("\nPossible reasons:")
        print("1. Wrong device path (RS485 adapters are often /dev/ttyS1 or /dev/ttyUSB0)")
        print("2. Port is held by the running service (stop the poller first)")
        print("3. Missing permission (add the user to the dialout group)")
        return 2

    failures = 0
    try:
        if args.reset:
            print(f"\n=== Sending reset ({args.reset}) ===")
            ok = await transport.reset(ResetScope(args.reset))
            print("Reset sent" if ok else f"*** RESET FAILED ({transport.last_fault.value}) ***")
            failures += 0 if ok else 1

        for attempt in range(1, args.count + 1):
            print(f"\n=== Query {attempt}/{args.count}: {protocol.QUERY_FRAME} ===")
            start = time.monotonic()
            reading = await transport.query()
            elapsed_ms = (time.monotonic() - start) * 1000

            if reading is None:
                failures += 1
                print(f"*** NO READING after {elapsed_ms:.0f} ms ({transport.last_fault.value}) ***")
            else:
                print(f"RX ({elapsed_ms:.0f} ms): {reading.raw!r}")
                print(f"  entries={reading.entries} exits={reading.exits} current={reading.current_count}")
                print(f"  out1={reading.output1} out2={reading.output2} "
                      f"count_enabled={reading.count_enabled} button={reading.button_pressed}")
                print(f"  sensor_ok={reading.sensor_ok} limit_exceeded={reading.limit_exceeded}")

            if attempt < args.count:
                await asyncio.sleep(args.interval_ms / 1000.0)
    finally:
        transport.close()
        print("\nPort closed")

    return 1 if failures else 0


def main() -> int:
    parser = argparse.ArgumentParser(description="People counter serial diagnostics")
    parser.add_argument("--port", default=protocol.DEFAULT_PORT)
    parser.add_argument("--baud", type=int, default=protocol.DEFAULT_BAUD)
    parser.add_argument("--count", type=int, default=1, help="Number of queries (default: 1)")
    parser.add_argument("--interval-ms", type=int, default=1000,
                        help="Delay between queries in ms (default: 1000)")
    parser.add_argument("--timeout-ms", type=int, default=int(protocol.RESPONSE_TIMEOUT * 1000),
                        help="Response deadline in ms (default: 1000)")
    parser.add_argument("--reset", choices=[scope.value for scope in ResetScope],
                        help="Send a reset before querying")
    parser.add_argument("--simulate", action="store_true", help="Use the built-in simulator")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log frames at DEBUG")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    return asyncio.run(diagnose_connection(args))


if __name__ == "__main__":
    sys.exit(main())
