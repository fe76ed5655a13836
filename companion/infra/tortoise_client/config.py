"""
Tortoise ORM configuration
"""

MODELS_MODULE = "companion.infra.tortoise_client.models"


def get_tortoise_config(database_url: str) -> dict:
    return {
        "connections": {
            "default": database_url
        },
        "apps": {
            "models": {
                "models": [MODELS_MODULE],
                "default_connection": "default",
            },
        },
    }
