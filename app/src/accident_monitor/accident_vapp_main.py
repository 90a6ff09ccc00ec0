import asyncio
import logging
import os
import signal

from vehicle import Vehicle  # type: ignore
from accident_monitor.accident_vapp import AccidentApp  # type: ignore

logging.getLogger().setLevel("DEBUG")

async def _main():
    instance_name = os.getenv("VEHICLE_INSTANCE_NAME", "Vehicle")
    try:
        app = AccidentApp(Vehicle(instance_name))
    except TypeError:
        app = AccidentApp(Vehicle())               # type: ignore
    await app.run()

if __name__ == "__main__":
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, loop.stop)
        except NotImplementedError:
            pass
    try:
        loop.run_until_complete(_main())
    finally:
        loop.close()
