"""
Timeline Renderer — structured and WhatsApp-ready progress summaries.

render():          [{stage, label, state, timestamp}] following the engine's classification
render_message():  template placeholder expansion + formatted timeline block

Timestamps are shown in the reference timezone with seconds precision. Upcoming
stages never show a timestamp, even when one is stored (a future-dated manual
edit must not read as authoritative).

Both functions are pure string/list composition; delivery lives in
certtrack.services.messaging.
"""

from collections.abc import Mapping
from zoneinfo import ZoneInfo

from certtrack.models.certification import Stage
from certtrack.services.lifecycle_engine import StageState, classify
from certtrack.utils.helpers import format_in_reference, reference_tz

# ── Template placeholders ────────────────────────────────────────────────────

PLACEHOLDER_NAME = "{{nome}}"
PLACEHOLDER_TRACKING_CODE = "{{codigo_rastreio}}"

SEPARATOR = "━━━━━━━━━━━━━━━━━━━━━━━━━"

MARK_DONE = "✓"
MARK_IN_PROGRESS = "⏳ Em andamento..."
MARK_WAITING = "○ Aguardando..."

_SIGNATURE = "Atenciosamente,\nSecretaria EJA EDUCA BRASIL EAD"

DEFAULT_TEMPLATES: dict[Stage, str] = {
    Stage.WELCOME: (
        "✅ Olá, seja bem-vindo(a) *{{nome}}* ao EJA EDUCA BRASIL EAD! 🎉\n\n"
        "O prazo para o *certificado digital é de 30 a 45 dias úteis* a partir do dia "
        "em que você realizar a prova e enviar a documentação solicitada.\n\n"
        "O prazo para o *certificado físico* é de no máximo 90 dias (opcional).\n\n"
        "Assim que *concluir sua prova*, por favor, nos informe.\n\n" + _SIGNATURE
    ),
    Stage.EXAM_IN_PROGRESS: (
        "📝 Olá *{{nome}}*!\n\n"
        "Notamos que sua prova está em andamento. Após concluir, precisaremos dos seus "
        "documentos para dar continuidade ao processo de certificação.\n\n" + _SIGNATURE
    ),
    Stage.DOCUMENTS_REQUESTED: (
        "📄 Olá *{{nome}}*!\n\n"
        "Sua prova foi concluída com sucesso! 🎉\n\n"
        "Agora precisamos que você nos envie:\n\n"
        "- RG (frente e verso)\n- CPF\n- Comprovante de residência\n\n" + _SIGNATURE
    ),
    Stage.DOCUMENTS_UNDER_REVIEW: (
        "🔍 Olá *{{nome}}*!\n\n"
        "Recebemos seus documentos e estamos analisando tudo com cuidado.\n\n" + _SIGNATURE
    ),
    Stage.CERTIFICATION_STARTED: (
        "✅ Olá *{{nome}}*!\n\n"
        "Seus documentos foram aprovados e já enviamos tudo para a certificadora!\n\n"
        + _SIGNATURE
    ),
    Stage.DIGITAL_CERTIFICATE_SENT: (
        "🎓 Parabéns *{{nome}}*!\n\n"
        "Seu certificado digital foi emitido e enviado para seu e-mail!\n\n"
        "Se você optou pelo certificado físico, ele será enviado em breve.\n\n" + _SIGNATURE
    ),
    Stage.PHYSICAL_CERTIFICATE_SENT: (
        "📦 Olá *{{nome}}*!\n\n"
        "Seu certificado físico foi enviado!\n\n"
        "Código de rastreio: {{codigo_rastreio}}\n\n" + _SIGNATURE
    ),
    Stage.COMPLETED: (
        "✅ Olá *{{nome}}*!\n\n"
        "Seu processo de certificação foi concluído com sucesso! 🎉\n\n" + _SIGNATURE
    ),
}


def default_template(stage: Stage) -> str:
    return DEFAULT_TEMPLATES[stage]


# ── Structured timeline ──────────────────────────────────────────────────────


def render(process, tz: ZoneInfo | None = None) -> list[dict]:
    """Ordered per-stage entries for the presentation layer."""
    tz = tz or reference_tz()
    entries = []
    for definition, state in classify(process):
        timestamp = None
        if state is not StageState.UPCOMING:
            timestamp = format_in_reference(process.get_stage_timestamp(definition.stage), tz)
        entries.append({
            "stage": definition.stage.value,
            "label": definition.label,
            "state": state.value,
            "timestamp": timestamp,
        })
    return entries


def render_timeline_block(process, tz: ZoneInfo | None = None) -> str:
    """The "RESUMO DO PROCESSO" block appended to outgoing messages."""
    lines = [SEPARATOR, "📊 *RESUMO DO PROCESSO*", SEPARATOR, ""]

    for entry in render(process, tz):
        lines.append(entry["label"])
        if entry["state"] == StageState.UPCOMING.value:
            lines.append(MARK_WAITING)
        elif entry["timestamp"]:
            lines.append(f"{MARK_DONE} {entry['timestamp']}")
        elif entry["state"] == StageState.COMPLETED.value:
            lines.append(MARK_DONE)
        else:
            lines.append(MARK_IN_PROGRESS)
        lines.append("")

    if process.wants_physical and process.physical_tracking_code:
        lines.append(SEPARATOR)
        lines.append("📦 *Código de Rastreio:*")
        lines.append(process.physical_tracking_code)

    lines.append(SEPARATOR)
    return "\n".join(lines) + "\n"


def expand_placeholders(template: str, *, student_name: str, tracking_code: str | None) -> str:
    return (
        template
        .replace(PLACEHOLDER_NAME, student_name or "")
        .replace(PLACEHOLDER_TRACKING_CODE, tracking_code or "")
    )


def render_message(
    process,
    template: str | None = None,
    *,
    student_name: str,
    templates: Mapping[Stage, str] | None = None,
    tz: ZoneInfo | None = None,
) -> str:
    """Expand *template* for the student and append the timeline block.

    When *template* is None the current stage's entry in *templates* is used,
    falling back to DEFAULT_TEMPLATES.
    """
    if template is None:
        stage = process.current_stage
        template = (templates or DEFAULT_TEMPLATES).get(stage, default_template(stage))
    body = expand_placeholders(
        template,
        student_name=student_name,
        tracking_code=process.physical_tracking_code,
    ).rstrip()
    block = render_timeline_block(process, tz)
    if not body:
        return block
    return f"{body}\n\n{block}"
