"""System directive rendering and prompt override lookup."""

from __future__ import annotations

import json
import logging
import re

from ..tickets import schemas
from ..tickets.repository import TicketStore

logger = logging.getLogger(__name__)

DEFAULT_CONTACT_NAME = "Amigo(a)"

_NON_ALPHANUMERIC = re.compile(r"[^a-zA-Z0-9]")

_DIRECTIVE_TEMPLATE = """
Responda sempre de forma educada, personalizada e OBJETIVA, usando o nome {name}.

IMPORTANTE: Antes de indicar fila, tag ou usuário, faça perguntas para entender claramente o problema ou a necessidade do cliente.
Somente utilize as funções (tools) para transferir fila, adicionar tag ou transferir usuário quando tiver informações suficientes para uma decisão adequada.
Nunca transfira ou categorize sem contexto suficiente. Se ainda não entendeu o pedido, faça perguntas para obter mais detalhes.
Se já estiver claro o motivo do contato, aí sim utilize as funções (tools) para indicar fila, tag e usuário.
Nunca apenas escreva a sugestão, sempre chame a função correspondente.
Seja breve e vá direto ao ponto, sem detalhar demais.

Filas disponíveis: {queues}
Tags disponíveis: {tags}
Usuários disponíveis: {users}

Regras:
- Antes de transferir, certifique-se de entender o problema do cliente.
- Se não houver contexto suficiente, faça perguntas para obter mais informações.
- Só utilize as funções (tools) quando tiver certeza da necessidade do cliente.
- Utilize exatamente os nomes das filas, tags e usuários conforme listado acima.
- NUNCA mostre ao cliente que está executando uma ação automática ou que está escolhendo fila/tag/usuário.
{escalation}
{prompt}
"""

ESCALATION_CLAUSE = """
ATENÇÃO: Você está no limite de mensagens permitido para análise. Agora, OBRIGATORIAMENTE, analise todo o histórico da conversa e utilize as funções (tools) para tomar a decisão mais adequada, mesmo que o contexto não esteja 100% claro. NÃO peça mais informações, apenas execute a automação necessária com base no que foi conversado até aqui. Você DEVE obrigatoriamente acionar pelo menos uma das funções (tools) disponíveis (transfer_queue, add_tag, transfer_user) de acordo com o contexto apresentado, mesmo que precise assumir a melhor opção possível.
"""


def sanitize_name(name: str | None) -> str:
    """Return the first name reduced to an alphanumeric token of at most 60 chars."""

    first = (name or "").split(" ")[0]
    return _NON_ALPHANUMERIC.sub("", first)[:60]


def render_directive(
    contact_name: str | None,
    snapshot: schemas.EntitySnapshot,
    *,
    escalate: bool,
    prompt: str,
) -> str:
    """Render the system instruction for one turn."""

    return _DIRECTIVE_TEMPLATE.format(
        name=sanitize_name(contact_name or DEFAULT_CONTACT_NAME),
        queues=json.dumps(snapshot.queue_names, ensure_ascii=False),
        tags=json.dumps(snapshot.tag_names, ensure_ascii=False),
        users=json.dumps(snapshot.user_names, ensure_ascii=False),
        escalation=ESCALATION_CLAUSE if escalate else "",
        prompt=prompt,
    )


class PromptResolver:
    """Resolve the base prompt, preferring an override stored under the settings name."""

    def __init__(self, store: TicketStore):
        self._store = store

    async def resolve(self, settings: schemas.AssistantSettings) -> str:
        try:
            override = await self._store.find_prompt(settings.name)
        except Exception as exc:
            logger.warning("Prompt lookup for %r failed, using configured prompt: %s", settings.name, exc)
            return settings.prompt
        if override is not None:
            return override.prompt
        return settings.prompt
