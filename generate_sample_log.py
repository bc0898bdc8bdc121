import argparse
import random
import time
from datetime import datetime, timedelta, timezone

OUTPUT_FILE = "access.log"
LINES = 1_000_000
ODATA_SHARE = 0.4

METHODS = ["GET"] * 8 + ["POST", "PUT", "MERGE", "DELETE"]

ODATA_URLS = [
    "/sap/opu/odata/sap/HCMFAB_LEAVE_REQUEST_SRV/$metadata",
    "/sap/opu/odata/sap/HCMFAB_LEAVE_REQUEST_SRV/LeaveRequestSet",
    "/sap/opu/odata/sap/HCMFAB_MYPAYSTUBS_SRV/PaystubSet",
    "/sap/opu/odata/sap/HCMFAB_MYPROFILE_SRV/EmployeeDetailSet",
    "/sap/opu/odata/sap/HCMFAB_COMMON_SRV/ConcurrentEmploymentSet",
    "/sap/opu/odata/sap/HCMFAB_TIMESHEET_MAINT_SRV/TimeEntries",
]

OTHER_URLS = [
    "/sap/bc/ui5_ui5/ui2/ushell/shells/abap/FioriLaunchpad.html",
    "/sap/opu/odata/UI2/PAGE_BUILDER_PERS/Pages",
    "/sap/opu/odata/sap/ESH_SEARCH_SRV/ServerInfos",
    "/sap/public/bc/ui2/logon/login.js",
    "/sap/bc/lrep/flex/settings",
]

# Internal addresses the reverse proxy forwards from.
INTERNAL_IPS = [f"10.0.72.{n}" for n in range(1, 9)] + ["10.0.73.14", "10.0.73.15"]

STATUSES = (
    [200] * 80 +
    [201] * 4 +
    [204] * 4 +
    [304] * 4 +
    [401] * 3 +
    [403] * 2 +
    [404] * 2 +
    [500] * 1
)

TZ = timezone(timedelta(hours=1))


def random_public_ip(rng):
    return ".".join(str(rng.randint(1, 254)) for _ in range(4))


def make_line(rng, ts):
    """
    Build one log line for Unix time ts.

    The internal address appears both as the third token and as the last
    x-forwarded-for hop.
    """
    stamp = datetime.fromtimestamp(ts, tz=TZ).strftime("%d/%b/%Y:%H:%M:%S %z")
    internal = rng.choice(INTERNAL_IPS)
    hops = [random_public_ip(rng) for _ in range(rng.randint(1, 2))]
    url = rng.choice(ODATA_URLS if rng.random() < ODATA_SHARE else OTHER_URLS)
    method = rng.choice(METHODS)
    status = rng.choice(STATUSES)
    size = rng.randint(0, 20000) if status != 204 else 0
    forwarded = ", ".join(hops + [internal])

    return (
        f"[{stamp}] {internal} {method} {url} HTTP/1.1 {status} {size} "
        f"[x-forwarded-for : {forwarded}]"
    )


def write_log(path, lines, seed=None, start=None):
    rng = random.Random(seed)
    ts = int(time.time()) - 2 * 3600 if start is None else start

    with open(path, "w", encoding="utf-8") as f:
        for i in range(lines):
            # Mostly ordered, a few requests per second.
            ts += rng.choice([0, 0, 0, 1, 1, 2])
            f.write(make_line(rng, ts) + "\n")

            if i % 100_000 == 0 and i > 0:
                print(f"Generated {i} lines...")


def main(argv=None):
    ap = argparse.ArgumentParser(description="Write a synthetic SAP gateway access log.")
    ap.add_argument("--out", default=OUTPUT_FILE)
    ap.add_argument("--lines", type=int, default=LINES)
    ap.add_argument("--seed", type=int)
    args = ap.parse_args(argv)

    write_log(args.out, args.lines, seed=args.seed)
    print(f"\nDone! File '{args.out}' with {args.lines} lines created.")


if __name__ == "__main__":
    main()
