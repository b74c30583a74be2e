"""
Email node executor.

Renders the recipient, subject and body templates against the run context
and hands the result to the configured EmailProvider.

Template body:
    {"to": "{{ payload.user.email }}",
     "subject": "Welcome {{ payload.user.name }}",
     "body": "..."}

The keys email_to_template, email_subject_template and email_body_template
are accepted as aliases.
"""

import re
from typing import Any, Dict, Optional

from core.exceptions import PermanentExecutionError
from notifications.providers import EmailProvider, RenderedEmail
from tasks.base_task import ExecutionContext, NodeExecutor, NodeResult
from workflow.definition import NodeTemplate
from workflow.templating import TemplateError, render_text

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def template_field(body: Dict[str, Any], *keys: str) -> Optional[Any]:
    """First non-empty value among ``keys`` in a template body."""
    for key in keys:
        value = body.get(key)
        if value not in (None, ""):
            return value
    return None


class EmailExecutor(NodeExecutor):
    """Send one email per node execution."""

    node_type = "email"
    display_name = "Send Email"

    def __init__(self, provider: EmailProvider, from_address: Optional[str] = None):
        self.provider = provider
        self.from_address = from_address

    def render(self, node: NodeTemplate, context: ExecutionContext) -> Dict[str, str]:
        body = node.template_body or {}
        to_tpl = template_field(body, "to", "email_to_template")
        subject_tpl = template_field(body, "subject", "email_subject_template")
        body_tpl = template_field(body, "body", "email_body_template")
        if to_tpl is None:
            raise PermanentExecutionError(f"Email node '{node.code}' has no recipient template")

        namespace = context.namespace()
        try:
            rendered = {
                "to": render_text(to_tpl, namespace).strip(),
                "subject": render_text(subject_tpl or "", namespace),
                "body": render_text(body_tpl or "", namespace),
            }
        except TemplateError as e:
            raise PermanentExecutionError(str(e), {"path": e.path}) from e

        if not EMAIL_RE.match(rendered["to"]):
            raise PermanentExecutionError(
                f"Invalid email recipient '{rendered['to']}'",
                {"recipient": rendered["to"]},
            )
        return rendered

    async def execute(
        self,
        node: NodeTemplate,
        context: ExecutionContext,
        attempt: int,
    ) -> NodeResult:
        rendered = self.render(node, context)
        message_id = await self.provider.send_email(
            context.idempotency_key,
            rendered["to"],
            RenderedEmail(
                subject=rendered["subject"],
                body=rendered["body"],
                from_address=self.from_address,
                metadata={"run_id": context.run.run_id, "node_id": node.id},
            ),
        )
        return NodeResult(
            output={
                "channel": "email",
                "to": rendered["to"],
                "subject": rendered["subject"],
                "provider_message_id": message_id,
                "status": "sent",
            },
            provider_message_id=message_id,
            input_context={"to": rendered["to"], "subject": rendered["subject"]},
        )
