import argparse
from datetime import timedelta

from mailmaint.core.security import create_access_token, MAINTENANCE_SCOPE


def issue_token(operator: str, hours: int) -> str:
    return create_access_token(operator, scope=MAINTENANCE_SCOPE, expires_delta=timedelta(hours=hours))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Mint an operator token for the maintenance API")
    parser.add_argument("operator")
    parser.add_argument("--hours", type=int, default=8)
    args = parser.parse_args()
    print(issue_token(args.operator, args.hours))
