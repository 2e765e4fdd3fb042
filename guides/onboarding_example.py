"""Employee onboarding driven through durastep.

Run it once with ``--crash`` to kill the process after provisioning and
before the welcome email, then run it again without the flag: the record and
provisioning steps are replayed from their checkpoints and only the email
step runs.

    python guides/onboarding_example.py onboarding-42 --crash
    python guides/onboarding_example.py onboarding-42
    durastep --database-url sqlite://onboarding.db runs show onboarding-42
"""

import asyncio
import logging
import os
import sys

from durastep import execute, get_store, new_context, run_parallel


def create_record() -> dict:
    print("creating employee record")
    return {"employee_id": "e-1001"}


async def provision_laptop() -> dict:
    print("ordering laptop")
    await asyncio.sleep(0.2)
    return {"asset": "laptop-77"}


def provision_access() -> list:
    print("granting access")
    return ["vpn", "email"]


def send_email() -> str:
    print("sending welcome email")
    return "sent"


async def main(run_id: str, crash: bool) -> None:
    store = get_store(database_url="sqlite://onboarding.db")
    ctx = new_context(run_id, store=store)

    record = await execute(ctx, "create-record", create_record)
    laptop, access = await run_parallel(
        ctx,
        [
            ("provision-laptop", provision_laptop),
            ("provision-access", provision_access),
        ],
    )
    if crash:
        print("simulating a crash")
        os._exit(1)
    await execute(ctx, "send-email", send_email)
    print(f"onboarded {record['employee_id']} with {laptop['asset']} and {access}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main(sys.argv[1], "--crash" in sys.argv[2:]))
