import os


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("true", "1", "on", "yes")


def get_config() -> dict:
    return {
        "THRESHOLD_MS2": float(os.getenv("ACCIDENT_THRESHOLD_MS2", "20.0")),
        "LOCATION_INTERVAL_MS": int(os.getenv("ACCIDENT_LOCATION_INTERVAL_MS", "1000")),
        "LOCATION_FASTEST_INTERVAL_MS": int(os.getenv("ACCIDENT_LOCATION_FASTEST_INTERVAL_MS", "500")),
        "LOCATION_TIMEOUT_S": float(os.getenv("ACCIDENT_LOCATION_TIMEOUT_S", "10.0")),
        "FALLBACK_ON_PROVIDER_FAILURE": _env_bool("ACCIDENT_FALLBACK_ON_PROVIDER_FAILURE", "true"),
        "MAPS_URL": os.getenv("ACCIDENT_MAPS_URL", "https://maps.google.com/?q="),
        "TOPIC_SMS": os.getenv("TOPIC_SMS", "ext/accident/sms"),
        "TOPIC_NOTIFY": os.getenv("TOPIC_NOTIFY", "ext/accident/notify"),
        "TOPIC_STATE": os.getenv("TOPIC_STATE", "ext/accident/state"),
        "TOPIC_LOCATION_REQUEST": os.getenv("TOPIC_LOCATION_REQUEST", "ext/accident/location/request"),
        "MQTT_HOST": os.getenv("MQTT_HOST", "127.0.0.1"),
        "MQTT_PORT": int(os.getenv("MQTT_PORT", "1883")),
    }
