"""
Claim Record Generator - randomized workers' compensation claim data.

Provides:
- Declarative field specs (fixed values, weighted choices, patterns, Faker
  providers, dates, dates relative to other fields, custom callables)
- Dependency-ordered generation so a field can read the fields it builds on
- Helper fields that feed other fields without being exported
- JSON and XML export (<ClaimRecords><ClaimRecord id="0001">...)
"""

import datetime
import json
import logging
import random
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from faker import Faker

from .exceptions import RecordError

logger = logging.getLogger(__name__)


class FieldType(Enum):
    DEFAULT = "default"
    CHOICE = "choice"
    PATTERN = "pattern"
    FAKER = "faker"
    DATE = "date"
    DATE_RELATIVE = "date_relative"
    CUSTOM = "custom"


@dataclass
class FieldSpec:
    """How one record field is produced."""
    name: str
    type: FieldType
    value: Any = None                           # DEFAULT
    weights: Dict[str, float] = None            # CHOICE
    pattern: str = None                         # PATTERN (# digit, ? letter)
    provider: str = None                        # FAKER method name
    start: str = None                           # DATE, ISO date
    end_offset_years: int = 0                   # DATE, relative to today
    relative_to: str = "now"                    # DATE_RELATIVE
    offset_min_days: int = 0
    offset_max_days: int = 0
    generator: Callable[["GenerationContext"], Any] = None   # CUSTOM
    condition: Callable[[Dict[str, Any]], bool] = None
    dependencies: List[str] = field(default_factory=list)
    helper: bool = False

    def __post_init__(self):
        if self.type == FieldType.DATE_RELATIVE and self.relative_to != "now":
            if self.relative_to not in self.dependencies:
                self.dependencies = self.dependencies + [self.relative_to]


@dataclass
class GenerationContext:
    """Values generated so far for one record, plus the random sources."""
    values: Dict[str, Any]
    faker: Faker
    random: random.Random
    today: datetime.date

    def __getitem__(self, key: str) -> Any:
        return self.values[key]

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)


@dataclass
class ClaimRecord:
    id: str
    values: Dict[str, str]

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, **self.values}


def sort_by_dependencies(specs: List[FieldSpec]) -> List[FieldSpec]:
    """Order specs so each comes after its dependencies.

    Raises RecordError on a cycle. Unknown dependencies are logged and ignored.
    """
    by_name = {s.name: s for s in specs}
    state: Dict[str, str] = {}
    ordered: List[FieldSpec] = []

    def visit(name: str, trail: List[str]) -> None:
        if state.get(name) == "visiting":
            raise RecordError(f"Circular dependency: {' -> '.join(trail + [name])}")
        if state.get(name) == "visited":
            return
        state[name] = "visiting"
        for dep in by_name[name].dependencies:
            if dep in by_name:
                visit(dep, trail + [name])
            else:
                logger.warning("Missing dependency %r for %r", dep, name)
        state[name] = "visited"
        ordered.append(by_name[name])

    for spec in specs:
        visit(spec.name, [])
    return ordered


def _shift_years(day: datetime.date, years: int) -> datetime.date:
    try:
        return day.replace(year=day.year + years)
    except ValueError:
        # Feb 29 in a non-leap target year
        return day.replace(year=day.year + years, day=28)


def _street_address(ctx: GenerationContext) -> str:
    return f"{ctx.random.randint(100, 9999)} {ctx.faker.street_name()}"


def _worker_street(ctx: GenerationContext) -> str:
    # the worker never lives on the employer's street
    while True:
        address = _street_address(ctx)
        if address.split(" ", 1)[1] != ctx["Emp_AddressLine1"].split(" ", 1)[1]:
            return address


def _city_line(ctx: GenerationContext) -> str:
    return f"{ctx.faker.city()}, BC {ctx.faker.postcode()}, Canada"


def _worker_first_name(ctx: GenerationContext) -> str:
    if ctx["Wrkr_Gender"] == "F":
        return ctx.faker.first_name_female()
    return ctx.faker.first_name_male()


def _split_practitioner(part: int) -> Callable[[GenerationContext], str]:
    def pick(ctx: GenerationContext) -> str:
        names = ctx["Prvdr_RawName"].split(" ", 1)
        return names[part] if len(names) > part else ""
    return pick


CLAIM_FIELDS: List[FieldSpec] = [
    FieldSpec("P2D_FormType8", FieldType.DEFAULT, value="1"),
    FieldSpec("P2D_FormType11", FieldType.DEFAULT, value="0"),
    FieldSpec("Claim_Number", FieldType.PATTERN, pattern="########"),
    FieldSpec("Inj_IncidentFromDateTime", FieldType.DATE_RELATIVE,
              relative_to="now", offset_min_days=-90, offset_max_days=0),
    FieldSpec("Claim_DateOfService", FieldType.DATE_RELATIVE,
              relative_to="Inj_IncidentFromDateTime", offset_min_days=1, offset_max_days=7),
    FieldSpec("Wrkr_DateOfBirth", FieldType.DATE, start="1960-01-01", end_offset_years=-18),
    FieldSpec("Emp_EmployerAccountName", FieldType.FAKER, provider="company"),
    FieldSpec("Emp_PhoneAreaCode", FieldType.CHOICE,
              weights={"604": 0.45, "778": 0.30, "250": 0.20, "236": 0.05}),
    FieldSpec("Emp_PhonePrefix", FieldType.PATTERN, pattern="%##"),
    FieldSpec("Emp_PhoneNumber", FieldType.PATTERN, pattern="####"),
    FieldSpec("Emp_AddressLine1", FieldType.CUSTOM, generator=_street_address),
    FieldSpec("Emp_AddressLine2", FieldType.CUSTOM, generator=_city_line),
    FieldSpec("Wrkr_Gender", FieldType.CHOICE, weights={"M": 0.5, "F": 0.5}),
    FieldSpec("Wrkr_FirstName", FieldType.CUSTOM, generator=_worker_first_name,
              dependencies=["Wrkr_Gender"]),
    FieldSpec("Wrkr_LastName", FieldType.FAKER, provider="last_name"),
    FieldSpec("Wrkr_MiddleInitials", FieldType.CUSTOM,
              generator=lambda ctx: ctx.faker.random_uppercase_letter()),
    FieldSpec("Wrkr_AddressLine1", FieldType.CUSTOM, generator=_worker_street,
              dependencies=["Emp_AddressLine1"]),
    FieldSpec("Wrkr_AddressLine2", FieldType.CUSTOM, generator=_city_line),
    FieldSpec("Wrkr_AreaCode", FieldType.CHOICE,
              weights={"604": 0.45, "778": 0.30, "250": 0.20, "236": 0.05}),
    FieldSpec("Wrkr_Number", FieldType.PATTERN, pattern="%##"),
    FieldSpec("Wrkr_Extension", FieldType.PATTERN, pattern="####"),
    FieldSpec("Wrkr_PersonalHealthNumber", FieldType.PATTERN, pattern="9#########"),
    FieldSpec("Claim_LostTimeIndicator", FieldType.CHOICE, weights={"0": 0.5, "1": 0.5}),
    FieldSpec("Rptm_PeriodStartDatetime", FieldType.DATE_RELATIVE,
              relative_to="Inj_IncidentFromDateTime", offset_min_days=0, offset_max_days=7,
              condition=lambda values: values.get("Claim_LostTimeIndicator") == "0",
              dependencies=["Claim_LostTimeIndicator"]),
    FieldSpec("Rptm_ReportedTimePeriodTypeCode", FieldType.PATTERN, pattern="%"),
    FieldSpec("Inj_DiagnosisText", FieldType.CHOICE, weights={
        "Lumbar strain": 0.30, "Wrist sprain": 0.20, "Shoulder contusion": 0.15,
        "Laceration of hand": 0.15, "Ankle sprain": 0.20,
    }),
    FieldSpec("Claim_IncidentDescriptionText", FieldType.FAKER, provider="sentence"),
    FieldSpec("Med_ConsultNurseAdvisorIndicator", FieldType.CHOICE, weights={"0": 0.6, "1": 0.4}),
    FieldSpec("P2D_MaximalRecoveryDate", FieldType.DATE_RELATIVE,
              relative_to="Rptm_PeriodStartDatetime", offset_min_days=0, offset_max_days=180),
    FieldSpec("Prvdr_PractitionerNumber", FieldType.PATTERN, pattern="#####"),
    FieldSpec("Prvdr_RawName", FieldType.FAKER, provider="name", helper=True),
    FieldSpec("Prvdr_FirstName", FieldType.CUSTOM, generator=_split_practitioner(0),
              dependencies=["Prvdr_RawName"]),
    FieldSpec("Prvdr_LastName", FieldType.CUSTOM, generator=_split_practitioner(1),
              dependencies=["Prvdr_RawName"]),
]


class ClaimRecordGenerator:
    """Generates claim records from a list of field specs."""

    def __init__(self, fields: Optional[List[FieldSpec]] = None,
                 seed: Optional[int] = None, locale: str = "en_CA",
                 today: Optional[datetime.date] = None):
        self.fields = sort_by_dependencies(list(fields or CLAIM_FIELDS))
        self.random = random.Random(seed)
        self.faker = Faker(locale)
        if seed is not None:
            self.faker.seed_instance(seed)
        self.today = today or datetime.date.today()

    @property
    def export_names(self) -> List[str]:
        return [f.name for f in self.fields if not f.helper]

    def generate_value(self, spec: FieldSpec, ctx: GenerationContext) -> Any:
        if spec.condition is not None and not spec.condition(ctx.values):
            return ""

        if spec.type == FieldType.DEFAULT:
            return spec.value if spec.value is not None else ""
        if spec.type == FieldType.CHOICE:
            options = list(spec.weights)
            return self.random.choices(options, weights=[spec.weights[o] for o in options])[0]
        if spec.type == FieldType.PATTERN:
            return self.faker.bothify(spec.pattern)
        if spec.type == FieldType.FAKER:
            return str(getattr(self.faker, spec.provider)())
        if spec.type == FieldType.DATE:
            start = datetime.date.fromisoformat(spec.start)
            end = _shift_years(self.today, spec.end_offset_years)
            span = max(0, (end - start).days)
            return (start + datetime.timedelta(days=self.random.randint(0, span))).isoformat()
        if spec.type == FieldType.DATE_RELATIVE:
            base = self.today
            if spec.relative_to != "now":
                try:
                    base = datetime.date.fromisoformat(str(ctx.get(spec.relative_to, "")))
                except ValueError:
                    base = self.today
            days = self.random.randint(spec.offset_min_days, spec.offset_max_days)
            return (base + datetime.timedelta(days=days)).isoformat()
        if spec.type == FieldType.CUSTOM:
            return spec.generator(ctx)
        raise RecordError(f"Unknown field type {spec.type!r} for {spec.name!r}")

    def generate_record(self, index: int) -> ClaimRecord:
        ctx = GenerationContext({}, self.faker, self.random, self.today)
        for spec in self.fields:
            try:
                value = self.generate_value(spec, ctx)
            except (KeyError, ValueError, TypeError, AttributeError) as e:
                logger.warning("Error generating %s: %s", spec.name, e)
                value = ""
            ctx.values[spec.name] = "" if value is None else str(value)

        exported = {name: ctx.values[name] for name in self.export_names}
        return ClaimRecord(id=f"{index:04d}", values=exported)

    def generate(self, count: int) -> List[ClaimRecord]:
        return [self.generate_record(i) for i in range(1, count + 1)]


def population_summary(records: List[ClaimRecord]) -> Dict[str, int]:
    """Number of records with an empty value, per field."""
    summary: Dict[str, int] = {}
    for record in records:
        for name, value in record.values.items():
            summary[name] = summary.get(name, 0) + (0 if value else 1)
    return summary


def records_to_xml(records: List[ClaimRecord]) -> str:
    root = ET.Element("ClaimRecords")
    for record in records:
        node = ET.SubElement(root, "ClaimRecord", id=record.id)
        for name, value in record.values.items():
            ET.SubElement(node, name).text = value
    ET.indent(root, space="  ")
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(root, encoding="unicode") + "\n"


def save_records(records: List[ClaimRecord], output_dir: Union[str, Path],
                 stem: str = "claim_records", xml: bool = True,
                 as_json: bool = True) -> List[Path]:
    """Write the records as <stem>.xml and/or <stem>.json."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    written = []
    if xml:
        path = output_dir / f"{stem}.xml"
        path.write_text(records_to_xml(records), encoding="utf-8")
        written.append(path)
    if as_json:
        path = output_dir / f"{stem}.json"
        with open(path, "w", encoding="utf-8") as f:
            json.dump([r.to_dict() for r in records], f, ensure_ascii=False, indent=2)
        written.append(path)
    return written
