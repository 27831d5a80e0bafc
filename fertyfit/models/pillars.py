"""Pillar snapshots: the current questionnaire state per user and pillar.

``PILLAR_FIELDS`` is the single schema for all four pillars. It maps each
questionnaire question id to the snapshot field it fills and the type the
answer is coerced to. One snapshot row exists per (user, pillar) and an
upsert replaces it entirely.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

import redis

from fertyfit.models.fields import to_bool, to_float, to_int, to_str, to_str_list

PILLAR_PREFIX = "pillar:"


class PillarType(str, Enum):
    FUNCTION = "FUNCTION"   # cycle / hormonal
    FOOD = "FOOD"           # nutrition
    FLORA = "FLORA"         # gut and vaginal microbiome
    FLOW = "FLOW"           # stress, sleep, emotional

    @classmethod
    def parse(cls, value: str) -> PillarType:
        """Case-insensitive lookup, raises ValueError for unknown pillars."""
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Unknown pillar: {value!r}") from None


@dataclass(frozen=True)
class PillarField:
    name: str
    question_id: str
    kind: str          # int | float | bool | str | list | json
    question: str = ""


PILLAR_FIELDS: dict[PillarType, tuple[PillarField, ...]] = {
    PillarType.FUNCTION: (
        PillarField("cycle_length", "function_cycle_length", "int", "Duración ciclo promedio"),
        PillarField("regularity_detail", "function_regularity_detail", "str", "Regularidad de tus ciclos"),
        PillarField("knows_fertile_days", "function_knows_fertile_days", "bool",
                    "¿Sabes identificar tus días fértiles?"),
        PillarField("luteal_phase_days", "function_luteal_phase", "int", "Duración fase lútea"),
        PillarField("fertile_mucus", "function_fertile_mucus", "str",
                    "¿Identificas moco cervical fértil?"),
        PillarField("pms_severity", "function_pms_severity", "int", "Síndrome Premenstrual (SPM)"),
        PillarField("fertility_diagnosis", "function_fertility_diagnosis", "str",
                    "¿Diagnóstico que afecta tu fertilidad?"),
        PillarField("ovulation_tracking", "function_ovulation_tracking", "str",
                    "¿Utilizas métodos para confirmar ovulación?"),
        PillarField("menstrual_bleeding", "function_menstrual_bleeding", "str",
                    "¿Tu sangrado menstrual es saludable?"),
        PillarField("diagnoses", "q9_diagnoses", "list", "Diagnósticos / Breve Historia Médica"),
        PillarField("fertility_treatments", "q20_fertility_treatments", "str",
                    "Tratamientos de fertilidad previos"),
    ),
    PillarType.FOOD: (
        PillarField("eating_pattern", "food_patron", "str", "Patrón de alimentación semanal"),
        PillarField("fish_frequency", "food_pescado", "int", "Frecuencia de pescado azul"),
        PillarField("vegetable_servings", "food_vege", "int", "Raciones de vegetales al día"),
        PillarField("fat_type", "food_grasas", "str", "Tipo de grasas en cocina"),
        PillarField("fertility_supplements", "food_suppl", "str", "Suplementos para la fertilidad"),
        PillarField("sugary_drinks_frequency", "food_azucar", "int", "Frecuencia de bebidas azucaradas"),
        PillarField("antioxidants", "food_antiox", "str", "Fuentes de antioxidantes"),
        PillarField("carb_source", "food_carbos", "str", "Principal fuente de carbohidratos"),
        PillarField("coffee_cups", "food_cafe", "int", "Tazas de café al día"),
        PillarField("alcohol_consumption", "food_alcohol", "str", "Consumo de alcohol semanal"),
    ),
    PillarType.FLORA: (
        PillarField("digestive_health", "flora_dig", "int", "Salud digestiva general"),
        PillarField("vaginal_health", "flora_vag", "str", "Salud vaginal"),
        PillarField("antibiotics_last_year", "flora_atb", "str", "Antibióticos en el último año"),
        PillarField("fermented_foods_frequency", "flora_ferm", "int", "Alimentos fermentados"),
        PillarField("food_intolerances", "flora_intol", "str", "Intolerancias alimentarias"),
        PillarField("digestive_symptoms", "flora_sintomas", "list", "Síntomas digestivos"),
        PillarField("sibo_diagnosed", "flora_sibo", "bool", "Diagnóstico de SIBO"),
        PillarField("hpylori_diagnosed", "flora_hpylori", "bool", "Diagnóstico de H. Pylori"),
        PillarField("skin_issues", "flora_piel", "str", "Problemas de piel"),
        PillarField("hair_issues", "flora_cabello", "str", "Problemas de cabello"),
    ),
    PillarType.FLOW: (
        PillarField("stress_level", "flow_stress", "int", "Nivel de estrés percibido"),
        PillarField("sleep_hours", "flow_sueno", "float", "Horas de sueño por noche"),
        PillarField("relaxation_frequency", "flow_relax", "int", "Técnicas de relajación"),
        PillarField("exercise_type", "flow_ejer", "json", "Tipo y frecuencia de ejercicio"),
        PillarField("morning_sunlight", "flow_solar", "str", "Luz solar matutina"),
        PillarField("endocrine_disruptors", "flow_tox", "str", "Disruptores endocrinos"),
        PillarField("bedtime_routine", "flow_noche", "str", "Rutina antes de dormir"),
        PillarField("social_environment", "flow_entorno_social", "str", "Entorno social"),
        PillarField("healthy_relationships", "flow_relaciones_saludables", "bool",
                    "¿Tienes relaciones saludables?"),
        PillarField("emotional_state", "flow_emocion", "int", "Estado emocional"),
        PillarField("sleep_quality", "flow_calidad_sueno", "int", "Calidad del sueño"),
        PillarField("libido", "flow_libido", "int", "Nivel de líbido"),
        PillarField("smoker", "flow_fumadora", "str", "¿Eres fumadora?"),
        PillarField("drug_use_last_year", "flow_drogas", "str", "Consumo de drogas en el último año"),
    ),
}


def _coerce(kind: str, value: Any) -> Any:
    if kind == "int":
        return to_int(value)
    if kind == "float":
        return to_float(value)
    if kind == "bool":
        return to_bool(value)
    if kind == "list":
        return to_str_list(value) or None
    if kind == "json":
        if isinstance(value, (dict, list)):
            return value or None
        return to_str(value)
    return to_str(value)


def normalize_answers(pillar: PillarType, answers: dict) -> dict:
    """Map raw questionnaire answers onto snapshot fields.

    Answers may be keyed by question id or by field name. Empty or
    unparseable answers are dropped, never stored as zero.
    """
    normalized = {}
    for pillar_field in PILLAR_FIELDS[pillar]:
        if pillar_field.question_id in answers:
            raw = answers[pillar_field.question_id]
        elif pillar_field.name in answers:
            raw = answers[pillar_field.name]
        else:
            continue
        value = _coerce(pillar_field.kind, raw)
        if value is not None:
            normalized[pillar_field.name] = value
    return normalized


def question_text(pillar: PillarType, question_id: str) -> str:
    for pillar_field in PILLAR_FIELDS[pillar]:
        if question_id in (pillar_field.question_id, pillar_field.name):
            return pillar_field.question or pillar_field.question_id
    return question_id


class PillarState:
    NOT_STARTED = "not_started"
    PARTIAL = "partial"
    COMPLETE = "complete"


def pillar_state(snapshot: Optional[PillarSnapshot]) -> str:
    """Complete once every field in the pillar's schema holds an answer."""
    if snapshot is None:
        return PillarState.NOT_STARTED
    answered = {name for name, value in snapshot.fields.items() if value not in (None, "", [], {})}
    if not answered:
        return PillarState.NOT_STARTED
    expected = {pillar_field.name for pillar_field in PILLAR_FIELDS[snapshot.pillar]}
    return PillarState.COMPLETE if expected <= answered else PillarState.PARTIAL


@dataclass
class PillarSnapshot:
    user_id: str
    pillar: PillarType
    fields: dict = field(default_factory=dict)
    updated_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "pillar": self.pillar.value,
            "fields": dict(self.fields),
            "updated_at": self.updated_at,
        }

    @staticmethod
    def redis_key(user_id: str, pillar: PillarType) -> str:
        return f"{PILLAR_PREFIX}{pillar.value.lower()}:{user_id}"

    def to_redis(self, r: redis.Redis) -> None:
        """Overwrite the whole snapshot row."""
        key = self.redis_key(self.user_id, self.pillar)
        self.updated_at = datetime.now(timezone.utc).isoformat()
        mapping = {name: json.dumps(value) for name, value in self.fields.items()}
        mapping["updated_at"] = json.dumps(self.updated_at)
        pipe = r.pipeline(transaction=True)
        pipe.delete(key)
        pipe.hset(key, mapping=mapping)
        pipe.execute()

    @classmethod
    def from_redis(cls, r: redis.Redis, user_id: str, pillar: PillarType) -> Optional[PillarSnapshot]:
        data = r.hgetall(cls.redis_key(user_id, pillar))
        if not data:
            return None
        decoded = {}
        for k, v in data.items():
            k = k.decode() if isinstance(k, bytes) else k
            v = v.decode() if isinstance(v, bytes) else v
            decoded[k] = json.loads(v)
        updated_at = decoded.pop("updated_at", "")
        return cls(user_id=user_id, pillar=pillar, fields=decoded, updated_at=updated_at)
