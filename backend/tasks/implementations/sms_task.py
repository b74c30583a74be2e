"""
SMS node executor.

Template body:
    {"to": "{{ payload.user.phone }}", "body": "Your code is {{ payload.code }}"}

Aliases: sms_to_template, sms_body_template. The rendered recipient must be
an E.164 number (``+`` followed by up to 15 digits).
"""

import re
from typing import Dict, Optional

from core.exceptions import PermanentExecutionError
from notifications.providers import RenderedSms, SmsProvider
from tasks.base_task import ExecutionContext, NodeExecutor, NodeResult
from tasks.implementations.email_task import template_field
from workflow.definition import NodeTemplate
from workflow.templating import TemplateError, render_text

E164_RE = re.compile(r"^\+[1-9]\d{1,14}$")


class SmsExecutor(NodeExecutor):
    """Send one SMS per node execution."""

    node_type = "sms"
    display_name = "Send SMS"

    def __init__(self, provider: SmsProvider, sender_id: Optional[str] = None):
        self.provider = provider
        self.sender_id = sender_id

    def render(self, node: NodeTemplate, context: ExecutionContext) -> Dict[str, str]:
        body = node.template_body or {}
        to_tpl = template_field(body, "to", "sms_to_template")
        body_tpl = template_field(body, "body", "sms_body_template")
        if to_tpl is None:
            raise PermanentExecutionError(f"SMS node '{node.code}' has no recipient template")

        namespace = context.namespace()
        try:
            to = render_text(to_tpl, namespace)
            text = render_text(body_tpl or "", namespace)
        except TemplateError as e:
            raise PermanentExecutionError(str(e), {"path": e.path}) from e

        # Tolerate formatting characters, the provider gets the bare number
        to = re.sub(r"[\s\-().]", "", to)
        if not E164_RE.match(to):
            raise PermanentExecutionError(
                f"Invalid SMS recipient '{to}', expected E.164",
                {"recipient": to},
            )
        return {"to": to, "body": text}

    async def execute(
        self,
        node: NodeTemplate,
        context: ExecutionContext,
        attempt: int,
    ) -> NodeResult:
        rendered = self.render(node, context)
        message_id = await self.provider.send_sms(
            context.idempotency_key,
            rendered["to"],
            RenderedSms(body=rendered["body"], sender_id=self.sender_id),
        )
        return NodeResult(
            output={
                "channel": "sms",
                "to": rendered["to"],
                "provider_message_id": message_id,
                "status": "sent",
            },
            provider_message_id=message_id,
            input_context={"to": rendered["to"]},
        )
