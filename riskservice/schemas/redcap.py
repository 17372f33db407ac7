"""
JSON schema for rows of the REDCap risk stratification export.

REDCap's flat JSON export sends every field as a string except the record ID,
which is a number when the project uses numeric IDs. Unknown fields are
tolerated; REDCap adds its own when the project changes.
"""

REDCAP_FIELD_LIST: list[str] = [
    "study_id",
    "redcap_event_name",
    "mrn",
    "participant_information_complete",
    "rf_date",
    "rf_cmc_risk_cat",
    "rf_func_risk_cat",
    "rf_sb_risk_cat",
    "rf_util_risk_cat",
    "rf_risk_predicted",
    "risk_factors_complete",
]

REDCAP_RECORD_SCHEMA: dict = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "REDCap risk factor record",
    "type": "object",
    "required": ["study_id"],
    "properties": {
        "study_id": {"type": ["string", "integer", "number"]},
        "redcap_event_name": {"type": "string"},
        "mrn": {"type": "string"},
        "participant_information_complete": {"type": "string"},
        "rf_date": {
            "type": "string",
            "description": "YYYY-MM-DD or empty. Unparseable dates drop the record, not the export.",
        },
        "rf_cmc_risk_cat": {"type": "string"},
        "rf_func_risk_cat": {"type": "string"},
        "rf_sb_risk_cat": {"type": "string"},
        "rf_util_risk_cat": {"type": "string"},
        "rf_risk_predicted": {"type": "string"},
        "risk_factors_complete": {"type": "string"},
    },
}
