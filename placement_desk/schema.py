"""Entity schemas, record shape and the built-in column tables."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional, Union

from placement_desk.errors import ConfigError

TEXT = "text"
NUMBER = "number"
DATE = "date"

ROLES = ("placement_officer", "department_coordinator", "management")

# Serial-number style headers that never carry record data.
NOISE_HEADERS = frozenset({"sno", "slno", "srno", "serialno", "serialnumber", "sn", "sino", "sl"})

COMPANY_TYPES = ("IT", "CORE", "BPO", "OTHER")

VISIT_TYPE_MAP = {
    "on campus": "On Campus",
    "oncampus": "On Campus",
    "off campus": "Off Campus",
    "offcampus": "Off Campus",
    "direct": "Direct",
    "phone call": "Phone Call",
    "phonecall": "Phone Call",
    "pooled": "Pooled",
    "internship/ppo": "Internship/PPO",
    "internship": "Internship/PPO",
    "ppo": "Internship/PPO",
    "hackathon": "Hackathon",
}


@dataclass(frozen=True)
class FieldSpec:
    key: str
    label: str
    kind: str = TEXT


@dataclass(frozen=True)
class EnrichmentSource:
    local_field: str
    table: str
    remote_field: str


@dataclass(frozen=True)
class EntitySchema:
    name: str
    title: str
    fields: tuple[FieldSpec, ...]
    identity: tuple[str, ...]
    aliases: dict[str, str]
    header_keywords: tuple[str, ...]
    value_maps: dict[str, dict[str, str]] = field(default_factory=dict)
    enrichment: tuple[EnrichmentSource, ...] = ()
    conflict_key: Optional[str] = None
    has_other_details: bool = True
    category_field: Optional[str] = None
    order_by: str = "created_at"

    @property
    def keys(self) -> list[str]:
        return [spec.key for spec in self.fields]

    def spec_for(self, key: str) -> Optional[FieldSpec]:
        for spec in self.fields:
            if spec.key == key:
                return spec
        return None

    def default_value(self, key: str, today: Optional[date] = None) -> Any:
        spec = self.spec_for(key)
        if spec is None or spec.kind == TEXT or spec.kind == DATE:
            return ""
        if key == "current_year":
            return (today or date.today()).year
        return 0


@dataclass(frozen=True)
class BuiltIn:
    field: str


@dataclass(frozen=True)
class Custom:
    name: str


ColumnRef = Union[BuiltIn, Custom]


@dataclass
class Record:
    values: dict[str, Any] = field(default_factory=dict)
    other_details: dict[str, str] = field(default_factory=dict)
    id: Optional[str] = None
    # Fields whose value came from an input sheet; never sent to the store.
    sourced: set[str] = field(default_factory=set, compare=False, repr=False)

    def get(self, ref: ColumnRef) -> Any:
        if isinstance(ref, Custom):
            return self.other_details.get(ref.name, "")
        return self.values.get(ref.field, "")

    def set(self, ref: ColumnRef, value: Any) -> None:
        if isinstance(ref, Custom):
            self.other_details[ref.name] = "" if value is None else str(value)
        else:
            self.values[ref.field] = value

    def is_empty(self) -> bool:
        return not self.values and not self.other_details

    def to_payload(self, schema: EntitySchema) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for spec in schema.fields:
            value = self.values.get(spec.key, schema.default_value(spec.key))
            if spec.kind == DATE and value == "":
                value = None
            payload[spec.key] = value
        if schema.has_other_details:
            payload["other_details"] = dict(self.other_details)
        return payload

    @classmethod
    def from_payload(cls, schema: EntitySchema, payload: dict[str, Any]) -> "Record":
        values = {}
        for spec in schema.fields:
            value = payload.get(spec.key)
            values[spec.key] = schema.default_value(spec.key) if value is None else value
        other = payload.get("other_details") or {}
        return cls(
            values=values,
            other_details={str(k): "" if v is None else str(v) for k, v in other.items()},
            id=None if payload.get("id") is None else str(payload["id"]),
        )


STUDENT_PLACEMENTS = EntitySchema(
    name="student_placements",
    title="Individual Placement Records",
    fields=(
        FieldSpec("company_name", "Company Name"),
        FieldSpec("company_mail", "Company Mail"),
        FieldSpec("company_address", "Company Address"),
        FieldSpec("hr_name", "HR Name"),
        FieldSpec("hr_mail", "HR Mail"),
        FieldSpec("student_name", "Student Name"),
        FieldSpec("student_id", "Student ID"),
        FieldSpec("student_mail", "Student Mail"),
        FieldSpec("student_mobile", "Student Mobile"),
        FieldSpec("student_address", "Student Address"),
        FieldSpec("department", "Dept"),
        FieldSpec("offer_type", "Type"),
        FieldSpec("salary", "Salary", NUMBER),
        FieldSpec("package_lpa", "Package (LPA)", NUMBER),
        FieldSpec("current_year", "Year", NUMBER),
        FieldSpec("semester", "Sem", NUMBER),
        FieldSpec("join_date", "Join Date", DATE),
        FieldSpec("ref_no", "Ref"),
    ),
    identity=("student_name",),
    aliases={
        "name": "student_name",
        "nameofstudent": "student_name",
        "candidatename": "student_name",
        "candidate": "student_name",
        "registerno": "student_id",
        "registernumber": "student_id",
        "regno": "student_id",
        "usn": "student_id",
        "rollno": "student_id",
        "rollnumber": "student_id",
        "email": "student_mail",
        "emailid": "student_mail",
        "mail": "student_mail",
        "mailid": "student_mail",
        "mobile": "student_mobile",
        "mobileno": "student_mobile",
        "mobilenumber": "student_mobile",
        "phone": "student_mobile",
        "phoneno": "student_mobile",
        "phonenumber": "student_mobile",
        "contact": "student_mobile",
        "contactno": "student_mobile",
        "contactnumber": "student_mobile",
        "address": "student_address",
        "residence": "student_address",
        "company": "company_name",
        "nameofcompany": "company_name",
        "organization": "company_name",
        "organisation": "company_name",
        "employer": "company_name",
        "companyemail": "company_mail",
        "companymailid": "company_mail",
        "officeaddress": "company_address",
        "hr": "hr_name",
        "contactperson": "hr_name",
        "hremail": "hr_mail",
        "hrmailid": "hr_mail",
        "dept": "department",
        "branch": "department",
        "offertype": "offer_type",
        "offer": "offer_type",
        "ctc": "package_lpa",
        "lpa": "package_lpa",
        "package": "package_lpa",
        "stipend": "salary",
        "monthlysalary": "salary",
        "year": "current_year",
        "sem": "semester",
        "joiningdate": "join_date",
        "dateofjoining": "join_date",
        "doj": "join_date",
        "refno": "ref_no",
        "referenceno": "ref_no",
        "letterid": "ref_no",
    },
    header_keywords=("name", "company", "salary", "student", "register", "dept", "mobile", "mail", "package"),
    enrichment=(
        EnrichmentSource("student_id", "master_students", "student_id"),
        EnrichmentSource("company_name", "master_companies", "company_name"),
    ),
    category_field="offer_type",
)

PLACEMENT_RECORDS = EntitySchema(
    name="placement_records",
    title="Placement Records",
    fields=(
        FieldSpec("v_visit_type", "Visit Type"),
        FieldSpec("date_of_visit", "Date of Visit", DATE),
        FieldSpec("v_company_name", "Company Name"),
        FieldSpec("v_company_address", "Company Address"),
        FieldSpec("v_location", "Location"),
        FieldSpec("v_company_contact_person", "Contact Person"),
        FieldSpec("v_company_contact_number", "Contact Number"),
        FieldSpec("v_company_mail_id", "Company Mail ID"),
        FieldSpec("company_type", "Company Type"),
        FieldSpec("salary_package", "Salary Package"),
        FieldSpec("remark", "Remark"),
        FieldSpec("reference_faculty", "Reference Faculty"),
    ),
    identity=("v_company_name",),
    aliases={
        "type": "v_visit_type",
        "mode": "v_visit_type",
        "date": "date_of_visit",
        "visitdate": "date_of_visit",
        "arrival": "date_of_visit",
        "company": "v_company_name",
        "nameofcompany": "v_company_name",
        "organization": "v_company_name",
        "address": "v_company_address",
        "officeaddress": "v_company_address",
        "city": "v_location",
        "venue": "v_location",
        "hrname": "v_company_contact_person",
        "contact": "v_company_contact_person",
        "hr": "v_company_contact_person",
        "mobile": "v_company_contact_number",
        "phone": "v_company_contact_number",
        "hrcontact": "v_company_contact_number",
        "email": "v_company_mail_id",
        "hrmail": "v_company_mail_id",
        "mail": "v_company_mail_id",
        "sector": "company_type",
        "industry": "company_type",
        "package": "salary_package",
        "ctc": "salary_package",
        "lpa": "salary_package",
        "salary": "salary_package",
        "notes": "remark",
        "status": "remark",
        "faculty": "reference_faculty",
        "reffaculty": "reference_faculty",
        "facultyref": "reference_faculty",
        "facultyname": "reference_faculty",
    },
    header_keywords=("company", "visit", "date", "type", "location", "contact", "person", "number", "mail", "remark"),
    value_maps={"v_visit_type": VISIT_TYPE_MAP},
    category_field="company_type",
)

MASTER_STUDENTS = EntitySchema(
    name="master_students",
    title="Student Master List",
    fields=(
        FieldSpec("student_id", "Register No"),
        FieldSpec("student_name", "Name"),
        FieldSpec("student_mail", "Email"),
        FieldSpec("student_mobile", "Mobile"),
        FieldSpec("student_address", "Address"),
        FieldSpec("department", "Dept"),
        FieldSpec("current_year", "Year", NUMBER),
        FieldSpec("semester", "Sem", NUMBER),
    ),
    identity=("student_id", "student_name"),
    aliases={
        "usn": "student_id",
        "rollno": "student_id",
        "regno": "student_id",
        "studentname": "student_name",
        "mail": "student_mail",
        "phone": "student_mobile",
        "residence": "student_address",
        "department": "department",
        "branch": "department",
        "semester": "semester",
    },
    header_keywords=("register", "name", "usn", "roll", "mail", "mobile", "dept"),
    conflict_key="student_id",
    has_other_details=False,
    order_by="student_id",
)

MASTER_COMPANIES = EntitySchema(
    name="master_companies",
    title="Company Master List",
    fields=(
        FieldSpec("company_name", "Company"),
        FieldSpec("company_mail", "Company Mail"),
        FieldSpec("company_address", "Company Address"),
        FieldSpec("hr_name", "HR Name"),
        FieldSpec("hr_mail", "HR Mail"),
    ),
    identity=("company_name",),
    aliases={
        "name": "company_name",
        "email": "company_mail",
        "address": "company_address",
        "contactperson": "hr_name",
        "hremail": "hr_mail",
    },
    header_keywords=("company", "name", "mail", "hr", "address"),
    conflict_key="company_name",
    has_other_details=False,
    order_by="company_name",
)

ENTITIES = {
    schema.name: schema
    for schema in (STUDENT_PLACEMENTS, PLACEMENT_RECORDS, MASTER_STUDENTS, MASTER_COMPANIES)
}


def get_entity(name: str) -> EntitySchema:
    try:
        return ENTITIES[name]
    except KeyError as exc:
        raise ConfigError(f"Unknown entity '{name}'. Known: {', '.join(sorted(ENTITIES))}") from exc
