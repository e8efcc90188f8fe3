"""Project version constants.

These constants are used in logs, the botocore user agent and the API version
endpoint so that persisted metric records can be traced back to an engine version.
"""

ENGINE_NAME: str = "lambdaprofiler"
ENGINE_VERSION: str = "0.1.0"

COST_MODEL_VERSION: str = "1"
