"""Internal constants for the La Marzocco customer-app cloud API."""

from __future__ import annotations

API_BASE = "https://lion.lamarzocco.io/api/customer-app"

AUTH_INIT_PATH = "/auth/init"
AUTH_SIGNIN_PATH = "/auth/signin"
AUTH_REFRESH_PATH = "/auth/refreshtoken"
THINGS_PATH = "/things"

CMD_CHANGE_MODE = "CoffeeMachineChangeMode"
CMD_BBW_CHANGE_MODE = "CoffeeMachineBrewByWeightChangeMode"
CMD_BBW_SETTING_DOSES = "CoffeeMachineBrewByWeightSettingDoses"
CMD_BACKFLUSH_START = "CoffeeMachineBackFlushStartCleaning"

HEADER_INSTALLATION_ID = "X-App-Installation-Id"
HEADER_TIMESTAMP = "X-Timestamp"
HEADER_NONCE = "X-Nonce"
HEADER_SIGNATURE = "X-Request-Signature"
HEADER_PROOF = "X-Request-Proof"

APP_HEADERS: dict[str, str] = {
    "Content-Type": "application/json",
    "Accept": "application/json",
}

# Dashboard widget codes
WIDGET_MACHINE_STATUS = "CMMachineStatus"
WIDGET_BREW_BY_WEIGHT = ("CMBrewByWeightDoses", "BrewByWeightDoses")
WIDGET_BOILER = ("CMCoffeeBoiler", "CMBoilerStatus")
WIDGET_SCALE = "ThingScale"

HTTP_TIMEOUT = 30  # seconds, total per request

# The vendor does not disclose the access token lifetime; one hour is assumed.
TOKEN_VALIDITY = 3600
TOKEN_REFRESH_MARGIN = 300  # seconds before expiry to trigger proactive refresh

DEFAULT_POLL_INTERVAL = 30

MIN_DOSE_GRAMS = 5.0
MAX_DOSE_GRAMS = 100.0

STATUS_QUEUE_SIZE = 16
RECONNECT_INTERVAL = 5  # seconds between MQTT reconnection attempts
