import json
import logging
from dataclasses import dataclass

import httpx

from upload_relay.config import Settings
from upload_relay.http import decode_body, post_form
from upload_relay.schemas import AnalysisRecord, utc_now_iso

TOKEN_PATH = "/services/oauth2/token"
SIMULATED_RECORD_ID = "SIMULATED-RECORD-ID-12345"

logger = logging.getLogger("upload_relay.salesforce")


class SalesforceConnectionError(ConnectionError):
    pass


@dataclass(frozen=True)
class AccessToken:
    access_token: str
    instance_url: str | None = None
    token_type: str | None = None


@dataclass(frozen=True)
class SaveResult:
    success: bool
    reference_id: str
    message: str


def token_endpoint(login_url: str) -> str:
    return f"{login_url.rstrip('/')}{TOKEN_PATH}"


class SalesforceClient:
    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings
        self._transport = transport

    async def fetch_access_token(self) -> AccessToken:
        login_url = self._settings.sf_login_url
        if not login_url:
            raise SalesforceConnectionError("SF_LOGIN_URL is not configured")

        endpoint = token_endpoint(login_url)
        logger.info("requesting salesforce access token", extra={"endpoint": endpoint})
        form = {
            "grant_type": "client_credentials",
            "client_id": self._settings.sf_client_id,
            "client_secret": self._settings.sf_client_secret,
        }
        try:
            response = await post_form(
                endpoint,
                form,
                timeout_s=self._settings.sf_timeout_s,
                transport=self._transport,
            )
        except httpx.HTTPError as exc:
            logger.error("salesforce oauth request failed: %s", exc)
            raise SalesforceConnectionError(str(exc) or exc.__class__.__name__) from exc

        body = decode_body(response)
        if not response.is_success:
            logger.error(
                "salesforce oauth error",
                extra={"downstream_status": response.status_code, "details": body},
            )
            raise SalesforceConnectionError(
                f"Request failed with status code {response.status_code}"
            )
        if not isinstance(body, dict) or not body.get("access_token"):
            raise SalesforceConnectionError("token response did not include an access_token")

        logger.info("salesforce access token retrieved")
        return AccessToken(
            access_token=str(body["access_token"]),
            instance_url=body.get("instance_url"),
            token_type=body.get("token_type"),
        )

    async def log_analysis(self, record: AnalysisRecord) -> SaveResult:
        logger.info("connecting to salesforce")
        token = await self.fetch_access_token()
        logger.info("connected to salesforce instance", extra={"instance_url": token.instance_url})

        sf_record = build_salesforce_record(record)
        logger.info(
            "would save to salesforce: object=Account record=%s",
            json.dumps(sf_record, indent=2, ensure_ascii=False),
            extra={"record_id": record.record_id},
        )
        for line in summarize_analysis(record):
            logger.info(line)
        logger.info("simulated salesforce save complete", extra={"record_id": record.record_id})

        return SaveResult(
            success=True,
            reference_id=SIMULATED_RECORD_ID,
            message="Analysis data prepared for Salesforce (simulated save)",
        )


def build_salesforce_record(record: AnalysisRecord) -> dict[str, str | None]:
    return {
        "Name": f"CV Analysis - {record.file_id}",
        "Analysis_Data__c": _dump_section(record.analysed),
        "Edited_Data__c": _dump_section(record.edited),
        "File_Name__c": None if record.file_id is None else str(record.file_id),
        "Analysis_Date__c": utc_now_iso(),
        "Status__c": "Completed",
    }


def summarize_analysis(record: AnalysisRecord) -> list[str]:
    lines = ["Analysis data summary:"]
    for category, items in (record.analysed or {}).items():
        items = items or []
        lines.append(f"  - {category}: {len(items)} items")
        for index, item in enumerate(items, start=1):
            score = item.score if item.score not in (None, "", 0) else "N/A"
            lines.append(f"    {index}. {item.hard_criterium} (Score: {score})")

    lines.append("Edited data summary:")
    for step, items in (record.edited or {}).items():
        items = items or []
        lines.append(f"  - Step {step}: {len(items)} edited items")
        for index, item in enumerate(items, start=1):
            lines.append(f"    {index}. {item.label} (Negative: {item.is_negative})")
            if item.feedback:
                lines.append(f"       Feedback: {item.feedback}")
    return lines


def _dump_section(section: dict | None) -> str | None:
    if section is None:
        return None
    payload = {
        key: None if items is None else [item.model_dump(by_alias=True) for item in items]
        for key, items in section.items()
    }
    return json.dumps(payload, ensure_ascii=False)
