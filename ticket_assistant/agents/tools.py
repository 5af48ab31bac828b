"""Function-calling specs exposed to the model."""

from __future__ import annotations

from typing import Any

TRANSFER_QUEUE = "transfer_queue"
ADD_TAG = "add_tag"
TRANSFER_USER = "transfer_user"

TOOL_SPECS: list[dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": TRANSFER_QUEUE,
            "description": "Transfere o ticket para uma fila específica.",
            "parameters": {
                "type": "object",
                "properties": {
                    "queue": {
                        "type": "string",
                        "description": "Nome exato da fila para transferir.",
                    }
                },
                "required": ["queue"],
                "additionalProperties": False,
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": ADD_TAG,
            "description": "Adiciona uma ou mais tags ao ticket e uma observação.",
            "parameters": {
                "type": "object",
                "properties": {
                    "tags": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "Lista de nomes exatos das tags a adicionar.",
                    },
                    "note": {
                        "type": "string",
                        "description": "Observação relevante sobre o atendimento.",
                    },
                },
                "required": ["tags"],
                "additionalProperties": False,
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": TRANSFER_USER,
            "description": "Transfere o ticket para um usuário específico.",
            "parameters": {
                "type": "object",
                "properties": {
                    "user": {
                        "type": "string",
                        "description": "Nome exato do usuário para transferir.",
                    }
                },
                "required": ["user"],
                "additionalProperties": False,
            },
        },
    },
]

