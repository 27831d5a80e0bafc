"""Notification rule catalog.

Rules are plain records; catalog order is the emission order when several
rules fire in one pass. Messages are user-facing Spanish copy.
"""

from __future__ import annotations

from typing import Optional

from fertyfit.engine.cycle import BmiCategory
from fertyfit.engine.rule_context import NO_LOG_DAYS, RuleContext
from fertyfit.models.notification import (
    NotificationMessage,
    NotificationType,
    Priority,
    Rule,
    RuleTrigger,
)
from fertyfit.models.pillars import PillarType

DAILY = frozenset({RuleTrigger.DAILY_CHECK})

DISCLAIMERS = {
    "fertile_window": "Esta estimación se basa en la duración media de tu ciclo y no sustituye "
                      "el seguimiento médico ni los métodos de confirmación de ovulación.",
    "ovulation": "La fecha de ovulación es aproximada. Tests LH y temperatura basal ayudan a confirmarla.",
    "bmi": "El IMC es un indicador orientativo. Consulta con un profesional sanitario antes de hacer "
           "cambios importantes en tu alimentación.",
    "age": "Esta información es general y no sustituye la valoración de tu ginecólogo.",
}

SPANISH_MONTHS = (
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
)

PILLAR_LABELS = {
    PillarType.FUNCTION: "Function (salud reproductiva)",
    PillarType.FOOD: "Food (alimentación)",
    PillarType.FLORA: "Flora (microbiota)",
    PillarType.FLOW: "Flow (estrés, sueño y emociones)",
}

STREAK_MILESTONES = (3, 7, 14)

FORM_GROUP = "FORM"

# Notifications dispatched per trigger pass, taken in catalog order
TRIGGER_MAX = {
    RuleTrigger.DAILY_CHECK: 3,
    RuleTrigger.DAILY_LOG_SAVED: 1,
    RuleTrigger.WEIGHT_UPDATE: 1,
    RuleTrigger.AGE_CHECK: 1,
}


def _on_cycle_day(ctx: RuleContext, target: int) -> bool:
    return ctx.current_cycle_day > 0 and ctx.current_cycle_day == target


def _period_day(ctx: RuleContext) -> Optional[int]:
    """Day of the cycle counted from the recorded period, without wrapping."""
    if ctx.days_since_last_period is None:
        return None
    return ctx.days_since_last_period + 1


# ── Fertile window ───────────────────────────────────────────────────────

def _vf1_condition(ctx: RuleContext) -> bool:
    return ctx.fertile_window is not None and _on_cycle_day(ctx, ctx.fertile_window.start - 2)


def _vf1_message(ctx: RuleContext) -> NotificationMessage:
    if ctx.age is not None and ctx.age >= 45:
        body = ("En 2 días comenzarán tus días más fértiles. Recuerda que después de los 45 años "
                "la fertilidad disminuye significativamente y los riesgos en el embarazo aumentan.")
    else:
        body = "En 2 días comenzarán tus días más fértiles del ciclo. Prepárate."
    return NotificationMessage(
        title="🌸 Tu ventana fértil se acerca",
        message=f"{body}\n\n{DISCLAIMERS['fertile_window']}",
    )


def _vf2_condition(ctx: RuleContext) -> bool:
    return ctx.fertile_window is not None and _on_cycle_day(ctx, ctx.fertile_window.ovulation_day)


def _vf2_message(ctx: RuleContext) -> NotificationMessage:
    window = ctx.fertile_window
    return NotificationMessage(
        title="✨ Hoy es tu pico de fertilidad",
        message=(f"Hoy, día {window.ovulation_day} de tu ciclo, es tu día estimado de ovulación. "
                 f"Tu ventana fértil va del día {window.start} al {window.end}.\n\n"
                 f"{DISCLAIMERS['ovulation']}"),
    )


def _vf3_condition(ctx: RuleContext) -> bool:
    return ctx.fertile_window is not None and _on_cycle_day(ctx, ctx.fertile_window.end + 1)


def _vf3_message(ctx: RuleContext) -> NotificationMessage:
    return NotificationMessage(
        title="Fin de tu ventana fértil",
        message=("Tu ventana fértil terminó. Tu próxima oportunidad será en tu siguiente ciclo.\n\n"
                 f"{DISCLAIMERS['fertile_window']}"),
    )


# ── Next period ──────────────────────────────────────────────────────────

def _pm1_condition(ctx: RuleContext) -> bool:
    return ctx.cycle_length is not None and _on_cycle_day(ctx, ctx.cycle_length - 2)


def _pm1_message(ctx: RuleContext) -> NotificationMessage:
    if ctx.next_period is None:
        body = "Tu próximo período se espera en aproximadamente 2 días."
    else:
        expected = f"{ctx.next_period.day} de {SPANISH_MONTHS[ctx.next_period.month - 1]}"
        body = f"Tu próximo período se espera alrededor del {expected}."
    return NotificationMessage(title="📅 Se acerca tu menstruación", message=body)


def _pm2_condition(ctx: RuleContext) -> bool:
    # Wrapped cycle days never pass the cycle length, so count from the recorded period
    day = _period_day(ctx)
    return ctx.cycle_length is not None and day is not None and day == ctx.cycle_length + 3


def _pm2_message(ctx: RuleContext) -> NotificationMessage:
    return NotificationMessage(
        title="🤔 Actualiza tu registro",
        message=("No has registrado tu menstruación. ¿Ya llegó? Mantén tu calendario actualizado "
                 "para mejores predicciones.\n\nPor favor, actualiza la fecha de tu última regla "
                 "en tu perfil."),
    )


def _cycle1_condition(ctx: RuleContext) -> bool:
    day = _period_day(ctx)
    return ctx.cycle_length is not None and day is not None and day >= ctx.cycle_length


def _cycle1_message(ctx: RuleContext) -> NotificationMessage:
    late = _period_day(ctx) - ctx.cycle_length
    if late == 0:
        body = (f"Tu ciclo promedio de {ctx.cycle_length} días ha concluido. "
                "Confírmalo para ajustar tu ciclo y mejorar tus informes.")
    else:
        days = "día" if late == 1 else "días"
        body = (f"Tu ciclo promedio de {ctx.cycle_length} días ha concluido hace {late} {days}. "
                "Confírmalo para ajustar tu ciclo y mejorar tus informes.")
    return NotificationMessage(
        title="¿Te vino la regla hoy?",
        message=body,
        metadata={
            "actions": [
                {"label": "Sí, me vino", "action": "period_confirmed", "value": "today"},
                {"label": "No, aún no", "action": "period_delayed", "value": late + 1},
            ],
        },
    )


# ── BMI and age ──────────────────────────────────────────────────────────

def _imc1_condition(ctx: RuleContext) -> bool:
    if ctx.previous_bmi is None or ctx.current_bmi is None:
        return False
    return ctx.previous_bmi.category != ctx.current_bmi.category


def _imc1_message(ctx: RuleContext) -> NotificationMessage:
    bmi = ctx.current_bmi
    if bmi.category == BmiCategory.UNDERWEIGHT:
        title = "⚠️ Tu IMC está bajo"
        body = (f"Tu IMC es {bmi.value} (bajo peso). {bmi.fertility_impact}. "
                "Considera consultar con un nutricionista.")
    elif bmi.category == BmiCategory.OVERWEIGHT:
        title = "⚖️ Tu IMC indica sobrepeso"
        body = (f"Tu IMC es {bmi.value}. {bmi.fertility_impact}. Pequeños cambios en tu "
                "alimentación pueden mejorar tu fertilidad.")
    elif bmi.category == BmiCategory.OBESE:
        title = "⚠️ Tu IMC indica obesidad"
        body = (f"Tu IMC es {bmi.value} ({bmi.category}). {bmi.fertility_impact}. "
                "Te recomendamos consultar con un especialista en nutrición.")
    else:
        title = "✅ Tu IMC está en rango saludable"
        body = f"Tu IMC es {bmi.value}. {bmi.fertility_impact}."
    return NotificationMessage(title=title, message=f"{body}\n\n{DISCLAIMERS['bmi']}")


def _edad1_message(ctx: RuleContext) -> NotificationMessage:
    return NotificationMessage(
        title="🌸 Programa de Menopausia",
        message=("A los 50 años, la mayoría de mujeres están en menopausia o perimenopausia. "
                 "El embarazo natural es extremadamente raro y conlleva riesgos significativos."
                 "\n\nTe invitamos a conocer nuestro programa especializado en menopausia, donde te "
                 "acompañamos en esta nueva etapa de tu vida.\n\n" + DISCLAIMERS["age"]),
    )


# ── Engagement and habits ────────────────────────────────────────────────

def _eng1_message(ctx: RuleContext) -> NotificationMessage:
    if ctx.days_since_last_log >= NO_LOG_DAYS:
        body = "Aún no has registrado tu ciclo ni tus hábitos. Empezar hará tu FertyScore más preciso."
    else:
        body = (f"Hace {ctx.days_since_last_log} días que no registras tu ciclo ni tus hábitos. "
                "Volver a hacerlo hará tu FertyScore más preciso.")
    return NotificationMessage(title="Te echamos de menos en tu registro", message=body)


def _eng2_message(ctx: RuleContext) -> NotificationMessage:
    return NotificationMessage(
        title=f"🔥 ¡{ctx.daily_log_streak} días seguidos!",
        message=(f"Llevas {ctx.daily_log_streak} días registrando sin fallar. "
                 "La constancia es lo que hace tu FertyScore realmente tuyo."),
    )


def _high_stress(ctx: RuleContext) -> bool:
    stress = ctx.last_7_days.avg_stress_level
    return stress is not None and stress >= 4


def _low_sleep(ctx: RuleContext) -> bool:
    sleep = ctx.last_7_days.avg_sleep_hours
    return sleep is not None and sleep < 6


def _combo_condition(ctx: RuleContext) -> bool:
    return _high_stress(ctx) and _low_sleep(ctx) and ctx.last_7_days.alcohol_days >= 3


def _static_message(title: str, message: str):
    note = NotificationMessage(title=title, message=message)
    return lambda ctx: note


# ── Questionnaires ───────────────────────────────────────────────────────

def _missing_pillar_rule(pillar: PillarType) -> Rule:
    label = PILLAR_LABELS[pillar]
    return Rule(
        id=f"FORM-{pillar.value}-NEW",
        triggers=DAILY,
        type=NotificationType.TIP,
        priority=Priority.HIGH,
        cooldown_days=7,
        condition=lambda ctx: pillar in ctx.missing_pillars,
        get_message=_static_message(
            "Aún falta un pilar por completar",
            f"Completa el pilar {label} para mejorar tus análisis y ajustar mejor tu FertyScore.",
        ),
        exclusive_group=FORM_GROUP,
    )


def _partial_pillar_rule(pillar: PillarType) -> Rule:
    label = PILLAR_LABELS[pillar]
    return Rule(
        id=f"FORM-{pillar.value}-PARTIAL",
        triggers=DAILY,
        type=NotificationType.TIP,
        priority=Priority.HIGH,
        cooldown_days=7,
        condition=lambda ctx: pillar in ctx.partial_pillars,
        get_message=_static_message(
            "Termina tu pilar de salud",
            f"Empezaste el pilar {label}. Completarlo hará que tus informes y tu FertyScore "
            "reflejen tu realidad.",
        ),
        exclusive_group=FORM_GROUP,
    )


RULES: tuple[Rule, ...] = (
    Rule(
        id="VF-1",
        triggers=DAILY,
        type=NotificationType.OPPORTUNITY,
        priority=Priority.HIGH,
        cooldown_days=0,
        condition=_vf1_condition,
        get_message=_vf1_message,
        fertility_gated=True,
    ),
    Rule(
        id="VF-2",
        triggers=DAILY,
        type=NotificationType.OPPORTUNITY,
        priority=Priority.HIGH,
        cooldown_days=0,
        condition=_vf2_condition,
        get_message=_vf2_message,
        fertility_gated=True,
    ),
    Rule(
        id="VF-3",
        triggers=DAILY,
        type=NotificationType.INSIGHT,
        priority=Priority.MEDIUM,
        cooldown_days=0,
        condition=_vf3_condition,
        get_message=_vf3_message,
        fertility_gated=True,
    ),
    Rule(
        id="PM-1",
        triggers=DAILY,
        type=NotificationType.INSIGHT,
        priority=Priority.MEDIUM,
        cooldown_days=0,
        condition=_pm1_condition,
        get_message=_pm1_message,
    ),
    Rule(
        id="PM-2",
        triggers=DAILY,
        type=NotificationType.ALERT,
        priority=Priority.HIGH,
        cooldown_days=0,
        condition=_pm2_condition,
        get_message=_pm2_message,
    ),
    Rule(
        id="CYCLE-1",
        triggers=DAILY,
        type=NotificationType.CONFIRMATION,
        priority=Priority.HIGH,
        cooldown_days=0,
        condition=_cycle1_condition,
        get_message=_cycle1_message,
    ),
    Rule(
        id="IMC-1",
        triggers=frozenset({RuleTrigger.WEIGHT_UPDATE}),
        type=NotificationType.ALERT,
        priority=Priority.HIGH,
        cooldown_days=7,
        condition=_imc1_condition,
        get_message=_imc1_message,
    ),
    Rule(
        id="EDAD-1",
        triggers=frozenset({RuleTrigger.AGE_CHECK}),
        type=NotificationType.ALERT,
        priority=Priority.HIGH,
        cooldown_days=365,
        condition=lambda ctx: ctx.age is not None and ctx.age >= 50,
        get_message=_edad1_message,
    ),
    Rule(
        id="ENG-1",
        triggers=DAILY,
        type=NotificationType.ALERT,
        priority=Priority.MEDIUM,
        cooldown_days=3,
        condition=lambda ctx: ctx.days_since_last_log >= 3,
        get_message=_eng1_message,
    ),
    Rule(
        id="ENG-2",
        triggers=frozenset({RuleTrigger.DAILY_LOG_SAVED}),
        type=NotificationType.CELEBRATION,
        priority=Priority.LOW,
        cooldown_days=0,
        condition=lambda ctx: ctx.daily_log_streak in STREAK_MILESTONES,
        get_message=_eng2_message,
    ),
    Rule(
        id="HAB-STRESS-1",
        triggers=DAILY,
        type=NotificationType.ALERT,
        priority=Priority.MEDIUM,
        cooldown_days=7,
        condition=_high_stress,
        get_message=_static_message(
            "Tu cuerpo pide una pausa",
            "Has tenido varios días de estrés elevado. Esto puede afectar tu ovulación. "
            "¿Revisamos tu pilar FLOW?",
        ),
    ),
    Rule(
        id="HAB-SLEEP-1",
        triggers=DAILY,
        type=NotificationType.ALERT,
        priority=Priority.MEDIUM,
        cooldown_days=7,
        condition=_low_sleep,
        get_message=_static_message(
            "Tu descanso está bajando",
            "Dormir poco varios días reduce la calidad ovulatoria. Te ayudamos a mejorarlo paso a paso.",
        ),
    ),
    Rule(
        id="HAB-ALCOHOL-1",
        triggers=DAILY,
        type=NotificationType.TIP,
        priority=Priority.MEDIUM,
        cooldown_days=7,
        condition=lambda ctx: ctx.last_7_days.alcohol_days >= 4,
        get_message=_static_message(
            "Cuida tu fertilidad esta semana",
            "Has consumido alcohol varios días. No pasa nada, pero es un buen momento para "
            "volver al equilibrio.",
        ),
    ),
    Rule(
        id="HAB-COMBO-1",
        triggers=DAILY,
        type=NotificationType.ALERT,
        priority=Priority.HIGH,
        cooldown_days=7,
        condition=_combo_condition,
        get_message=_static_message(
            "Tu fertilidad necesita calma",
            "Estrés, poco sueño y alcohol han coincidido esta semana. Te proponemos pautas para "
            "recuperar bienestar.",
        ),
    ),
) + (
    # partial questionnaires are nudged before untouched ones
    tuple(_partial_pillar_rule(pillar) for pillar in PillarType)
    + tuple(_missing_pillar_rule(pillar) for pillar in PillarType)
)

RULES_BY_ID = {rule.id: rule for rule in RULES}
