# scripts/mint_credential.py
import os  # read environment variables
import argparse  # parse CLI args

from checkpoint_gate.auth import Role, mint_session_token  # operator sessions for manual testing
from checkpoint_gate.credentials import CredentialIssuer  # same issuer the service uses


def main() -> None:
    parser = argparse.ArgumentParser(description="Mint a participant credential or an operator session token")
    parser.add_argument("--participant-id")  # participant to bind the credential to
    parser.add_argument("--event-id")  # event the credential is valid for
    parser.add_argument("--ttl-days", type=int, default=30)  # credential lifetime
    parser.add_argument("--operator-id")  # mint a session token instead
    parser.add_argument("--role", choices=[r.value for r in Role], default=Role.VOLUNTEER.value)
    args = parser.parse_args()

    secret = os.environ.get("CHECKIN_SIGNING_SECRET", "")

    if args.operator_id:
        session_secret = os.environ.get("SESSION_SECRET") or secret
        print(mint_session_token(session_secret, args.operator_id, Role(args.role)))
        return

    if not (args.participant_id and args.event_id):
        parser.error("--participant-id and --event-id are required to mint a credential")

    # raises ConfigurationError when the secret is unset
    issuer = CredentialIssuer(secret, ttl_days=args.ttl_days)
    print(issuer.issue(args.participant_id, args.event_id))


if __name__ == "__main__":
    main()
