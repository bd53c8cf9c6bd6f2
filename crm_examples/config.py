"""
Credentials and connection bootstrap for the Salesforce backend.

Credentials are read from environment variables, loaded from a ``.env`` file
at the project root when present:

    SALESFORCE_USERNAME / SALESFORCE_PASSWORD / SALESFORCE_SECURITY_TOKEN
    SALESFORCE_B2B_*    / SALESFORCE_B2C_*      (alternative org profiles)
    SALESFORCE_DOMAIN   ("test" for sandboxes, defaults to "login")

When username/password login is not possible, the access token of the
Salesforce CLI's target org is used instead (``sf org display``).
"""

import json
import logging
import os
import subprocess
from typing import Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel
from simple_salesforce import Salesforce
from simple_salesforce.exceptions import SalesforceAuthenticationFailed

logger = logging.getLogger(__name__)

ORG_TYPES = ("original", "b2b", "b2c")
ENV_PREFIXES = {
    "original": "SALESFORCE",
    "b2b": "SALESFORCE_B2B",
    "b2c": "SALESFORCE_B2C",
}


class Credentials(BaseModel):
    org_type: str = "original"
    username: Optional[str] = None
    password: Optional[str] = None
    security_token: Optional[str] = None
    domain: str = "login"

    @property
    def complete(self) -> bool:
        return all([self.username, self.password, self.security_token])


def load_env() -> None:
    # .env at the project root, otherwise the default dotenv search
    env_path = os.path.join(os.path.dirname(__file__), "..", ".env")
    if os.path.exists(env_path):
        load_dotenv(env_path)
    else:
        load_dotenv()


def load_credentials(org_type: str = "original") -> Credentials:
    if org_type not in ORG_TYPES:
        raise ValueError(f"Invalid org_type '{org_type}'. Must be one of {', '.join(ORG_TYPES)}")
    load_env()
    prefix = ENV_PREFIXES[org_type]
    return Credentials(
        org_type=org_type,
        username=os.getenv(f"{prefix}_USERNAME"),
        password=os.getenv(f"{prefix}_PASSWORD"),
        security_token=os.getenv(f"{prefix}_SECURITY_TOKEN"),
        domain=os.getenv("SALESFORCE_DOMAIN", "login"),
    )


def _sf_json(*args: str) -> dict:
    result = subprocess.run(["sf", *args, "--json"], capture_output=True, text=True, check=True)
    return json.loads(result.stdout)


def get_access_token_from_cli() -> Tuple[Optional[str], Optional[str]]:
    """Access token and instance URL of the Salesforce CLI's default target org."""
    try:
        config_data = _sf_json("config", "get", "target-org")
        result_list = config_data.get("result", [])
        target_org = result_list[0].get("value", "") if result_list else ""
        if not target_org:
            return None, None
        org = _sf_json("org", "display", "--target-org", target_org).get("result", {})
    except (OSError, subprocess.CalledProcessError, json.JSONDecodeError) as e:
        logger.warning(f"Could not read access token from Salesforce CLI: {e}")
        return None, None
    logger.info(f"Using Salesforce CLI target-org: {target_org}")
    return org.get("accessToken") or None, org.get("instanceUrl") or None


def connect(org_type: str = "original") -> Salesforce:
    credentials = load_credentials(org_type)
    logger.info(f"Connecting to Salesforce ({org_type})...")

    if credentials.complete:
        try:
            return Salesforce(
                username=credentials.username,
                password=credentials.password,
                security_token=credentials.security_token,
                domain=credentials.domain,
            )
        except SalesforceAuthenticationFailed as e:
            logger.warning(f"Username/password authentication failed: {e}; trying Salesforce CLI access token")
    else:
        logger.warning("No username/password provided, trying Salesforce CLI access token")

    access_token, instance_url = get_access_token_from_cli()
    if access_token and instance_url:
        return Salesforce(instance_url=instance_url, session_id=access_token)
    raise ValueError("Could not connect to Salesforce. Check credentials or run 'sf org login web'.")
