"""
Case and justice records.

Oyez payloads have no fixed schema: fields go missing, come back null, or
change shape between endpoints. The parsers in this module turn upstream JSON
and the JSON columns stored from it into typed records once, at the boundary,
so the sync job and the analytics never read raw dicts. Parsing never raises
on malformed input; missing pieces degrade to None or empty lists.
"""
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from term_utils import format_timestamp, strip_html

PARTY_SEPARATOR = " v. "
DECIDED_EVENT = "Decided"
ARGUED_EVENTS = ("Argued", "Reargued")
PEOPLE_PATH = "/people/"

# Conclusion-text fallback patterns, tried in this order
SPLIT_PATTERN = re.compile(r"(\d+)[-–](\d+)\s+(?:majority|opinion)", re.IGNORECASE)
UNANIMOUS_PATTERN = re.compile(r"\bunanimous(?:ly)?\b", re.IGNORECASE)
EQUALLY_DIVIDED_PATTERN = re.compile(r"equally divided", re.IGNORECASE)


class CaseStage(str, Enum):
    GRANTED = "granted"
    ARGUED = "argued"
    DECIDED = "decided"


class VoteSide(str, Enum):
    MAJORITY = "majority"
    MINORITY = "minority"
    NONE = "none"

    @classmethod
    def parse(cls, value: Any) -> "VoteSide":
        if not isinstance(value, str):
            return cls.NONE
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.NONE


@dataclass(frozen=True)
class ResolvedSplit:
    """A known majority/minority outcome.

    ``structured`` is False when the numbers came from the conclusion text
    rather than from the decision record itself.
    """
    majority: int
    minority: int
    structured: bool = True

    @property
    def is_unanimous(self) -> bool:
        return self.minority == 0

    @property
    def label(self) -> str:
        if self.is_unanimous:
            return "Unanimous"
        return f"{self.majority}-{self.minority}"


@dataclass(frozen=True)
class UnresolvedSplit:
    reason: str = "no vote data"


VoteSplit = Union[ResolvedSplit, UnresolvedSplit]


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def split_party_names(name: Optional[str]) -> Tuple[str, str]:
    """Split 'X v. Y' into its parties; anything else is all first party"""
    name = name or ""
    parts = name.split(PARTY_SEPARATOR)
    if len(parts) == 2:
        return parts[0].strip(), parts[1].strip()
    return name, ""


def justice_identifier(href: Optional[str]) -> Optional[str]:
    """Extract the profile slug from an Oyez people URL"""
    if not href or PEOPLE_PATH not in href:
        return None
    slug = href.split(PEOPLE_PATH, 1)[1]
    slug = slug.split("?", 1)[0].split("#", 1)[0].strip("/")
    return slug or None


@dataclass
class Citation:
    volume: Optional[str] = None
    page: Optional[str] = None
    year: Optional[str] = None

    @classmethod
    def from_json(cls, raw: Any) -> Optional["Citation"]:
        raw = _as_dict(raw)
        if not raw:
            return None
        return cls(_text(raw.get("volume")), _text(raw.get("page")), _text(raw.get("year")))

    def to_json(self) -> Dict[str, Any]:
        return {"volume": self.volume, "page": self.page, "year": self.year}


@dataclass
class TimelineEvent:
    event: str
    dates: List[int] = field(default_factory=list)

    @classmethod
    def from_json(cls, raw: Any) -> Optional["TimelineEvent"]:
        raw = _as_dict(raw)
        event = _text(raw.get("event"))
        if not event:
            return None
        dates = [_as_int(d) for d in _as_list(raw.get("dates"))]
        return cls(event, [d for d in dates if d is not None])

    def to_json(self) -> Dict[str, Any]:
        return {"event": self.event, "dates": list(self.dates)}


def parse_timeline(raw: Any) -> List[TimelineEvent]:
    events = (TimelineEvent.from_json(item) for item in _as_list(raw))
    return [e for e in events if e is not None]


def decision_date(timeline: Optional[List[TimelineEvent]]) -> Tuple[Optional[str], Optional[int]]:
    """Formatted date and timestamp of the first 'Decided' timeline entry"""
    if not timeline:
        return None, None
    decided = next((t for t in timeline if t.event == DECIDED_EVENT), None)
    if decided is None or not decided.dates:
        return None, None
    ts = decided.dates[0]
    return format_timestamp(ts), ts


def derive_stage(is_decided: bool, timeline: Optional[List[TimelineEvent]]) -> CaseStage:
    events = {t.event for t in timeline or []}
    if is_decided or DECIDED_EVENT in events:
        return CaseStage.DECIDED
    if any(e in events for e in ARGUED_EVENTS):
        return CaseStage.ARGUED
    return CaseStage.GRANTED


def parse_conclusion_split(conclusion: Optional[str]) -> VoteSplit:
    """Best-effort vote split from a conclusion paragraph.

    Recognizes, in order: 'N-M majority' / 'N-M opinion' (hyphen or en-dash),
    'unanimous' / 'unanimously' (9-0), and 'equally divided' (4-4). Anything
    else stays unresolved rather than guessed.
    """
    text = strip_html(conclusion)
    if not text:
        return UnresolvedSplit("no conclusion text")
    match = SPLIT_PATTERN.search(text)
    if match:
        return ResolvedSplit(int(match.group(1)), int(match.group(2)), structured=False)
    if UNANIMOUS_PATTERN.search(text):
        return ResolvedSplit(9, 0, structured=False)
    if EQUALLY_DIVIDED_PATTERN.search(text):
        return ResolvedSplit(4, 4, structured=False)
    return UnresolvedSplit("unrecognized conclusion text")


@dataclass
class Advocate:
    name: str
    href: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def from_json(cls, raw: Any) -> Optional["Advocate"]:
        raw = _as_dict(raw)
        person = _as_dict(raw.get("advocate"))
        name = _text(person.get("name"))
        if not name:
            return None
        return cls(name, _text(person.get("href")), _text(raw.get("advocate_description")))

    def to_json(self) -> Dict[str, Any]:
        return {
            "advocate": {"name": self.name, "href": self.href},
            "advocate_description": self.description,
        }


@dataclass
class WrittenOpinion:
    title: Optional[str] = None
    category: Optional[str] = None
    judge_full_name: Optional[str] = None
    judge_last_name: Optional[str] = None
    opinion_url: Optional[str] = None

    @classmethod
    def from_json(cls, raw: Any) -> Optional["WrittenOpinion"]:
        raw = _as_dict(raw)
        if not raw:
            return None
        kind = _as_dict(raw.get("type"))
        return cls(
            title=_text(raw.get("title")),
            category=_text(kind.get("label")) or _text(kind.get("value")),
            judge_full_name=_text(raw.get("judge_full_name")),
            judge_last_name=_text(raw.get("judge_last_name")),
            opinion_url=_text(raw.get("justia_opinion_url")),
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "type": {"label": self.category},
            "judge_full_name": self.judge_full_name,
            "judge_last_name": self.judge_last_name,
            "justia_opinion_url": self.opinion_url,
        }


@dataclass
class JusticeVote:
    identifier: Optional[str]
    name: Optional[str]
    last_name: Optional[str]
    href: Optional[str]
    side: VoteSide = VoteSide.NONE
    opinion_type: Optional[str] = None
    joining: List[str] = field(default_factory=list)

    @classmethod
    def from_json(cls, raw: Any) -> Optional["JusticeVote"]:
        raw = _as_dict(raw)
        member = _as_dict(raw.get("member"))
        href = _text(member.get("href"))
        identifier = justice_identifier(href) or _text(member.get("identifier"))
        name = _text(member.get("name"))
        if not identifier and not name:
            return None
        joining = [_text(_as_dict(j).get("name")) for j in _as_list(raw.get("joining"))]
        return cls(
            identifier=identifier,
            name=name,
            last_name=_text(member.get("last_name")),
            href=href,
            side=VoteSide.parse(raw.get("vote")),
            opinion_type=_text(raw.get("opinion_type")),
            joining=[j for j in joining if j],
        )

    @property
    def authored(self) -> bool:
        return bool(self.opinion_type) and self.opinion_type.lower() != "none"

    def to_json(self) -> Dict[str, Any]:
        return {
            "member": {
                "identifier": self.identifier,
                "name": self.name,
                "last_name": self.last_name,
                "href": self.href,
            },
            "vote": self.side.value,
            "opinion_type": self.opinion_type,
            "joining": [{"name": name} for name in self.joining],
        }


@dataclass
class Decision:
    majority_vote: Optional[int] = None
    minority_vote: Optional[int] = None
    decision_type: Optional[str] = None
    winning_party: Optional[str] = None
    description: Optional[str] = None
    votes: List[JusticeVote] = field(default_factory=list)

    @classmethod
    def from_json(cls, raw: Any) -> Optional["Decision"]:
        if not isinstance(raw, dict):
            return None
        votes = (JusticeVote.from_json(v) for v in _as_list(raw.get("votes")))
        return cls(
            majority_vote=_as_int(raw.get("majority_vote")),
            minority_vote=_as_int(raw.get("minority_vote")),
            decision_type=_text(raw.get("decision_type")),
            winning_party=_text(raw.get("winning_party")),
            description=_text(raw.get("description")),
            votes=[v for v in votes if v is not None],
        )

    @property
    def has_structured_votes(self) -> bool:
        """Both vote counts present; this is what locks a stored case"""
        return self.majority_vote is not None and self.minority_vote is not None

    def structured_split(self) -> VoteSplit:
        majority = self.majority_vote or 0
        minority = self.minority_vote or 0
        if majority == 0 and minority == 0:
            return UnresolvedSplit("no structured votes")
        return ResolvedSplit(majority, minority, structured=True)

    def to_json(self) -> Dict[str, Any]:
        return {
            "majority_vote": self.majority_vote,
            "minority_vote": self.minority_vote,
            "decision_type": self.decision_type,
            "winning_party": self.winning_party,
            "description": self.description,
            "votes": [v.to_json() for v in self.votes],
        }


def parse_decisions(raw: Any) -> List[Decision]:
    decisions = (Decision.from_json(d) for d in _as_list(raw))
    return [d for d in decisions if d is not None]


def resolve_vote_split(decision: Optional[Decision], conclusion: Optional[str]) -> VoteSplit:
    """Structured votes win; the conclusion text is only consulted without them"""
    if decision is not None:
        split = decision.structured_split()
        if isinstance(split, ResolvedSplit):
            return split
    return parse_conclusion_split(conclusion)


@dataclass
class CaseSummary:
    id: str
    name: str
    first_party: str
    second_party: str
    docket_number: str
    term: str
    decision_date: Optional[str]
    decision_timestamp: Optional[int]
    majority_votes: Optional[int]
    minority_votes: Optional[int]
    is_decided: bool
    stage: CaseStage
    decision_type: str
    description: str
    href: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CaseDetail:
    term: str
    docket_number: str
    name: str
    first_party: str = ""
    second_party: str = ""
    description: Optional[str] = None
    facts_of_the_case: Optional[str] = None
    question: Optional[str] = None
    conclusion: Optional[str] = None
    citation: Optional[Citation] = None
    justia_url: Optional[str] = None
    href: str = ""
    decisions: List[Decision] = field(default_factory=list)
    advocates: List[Advocate] = field(default_factory=list)
    written_opinion: List[WrittenOpinion] = field(default_factory=list)
    timeline: List[TimelineEvent] = field(default_factory=list)
    fetched_at: Optional[datetime] = None

    @property
    def case_id(self) -> str:
        return f"{self.term}-{self.docket_number}"

    @property
    def decision(self) -> Optional[Decision]:
        """The first decision is the authoritative one"""
        return self.decisions[0] if self.decisions else None

    @property
    def has_structured_votes(self) -> bool:
        return self.decision is not None and self.decision.has_structured_votes

    @property
    def is_decided(self) -> bool:
        return self.has_structured_votes or any(t.event == DECIDED_EVENT for t in self.timeline)

    @property
    def stage(self) -> CaseStage:
        return derive_stage(self.is_decided, self.timeline)

    @property
    def decision_date(self) -> Optional[str]:
        return decision_date(self.timeline)[0]

    @property
    def decision_timestamp(self) -> Optional[int]:
        return decision_date(self.timeline)[1]

    @property
    def vote_split(self) -> VoteSplit:
        return resolve_vote_split(self.decision, self.conclusion)

    def summary(self) -> CaseSummary:
        formatted, timestamp = decision_date(self.timeline)
        split = self.vote_split
        resolved = isinstance(split, ResolvedSplit)
        decision = self.decision
        return CaseSummary(
            id=self.case_id,
            name=self.name,
            first_party=self.first_party,
            second_party=self.second_party,
            docket_number=self.docket_number,
            term=self.term,
            decision_date=formatted,
            decision_timestamp=timestamp,
            majority_votes=split.majority if resolved else None,
            minority_votes=split.minority if resolved else None,
            is_decided=self.is_decided,
            stage=self.stage,
            decision_type=(decision.decision_type if decision else None) or "",
            description=strip_html(self.description),
            href=self.href,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.update(
            id=self.case_id,
            is_decided=self.is_decided,
            stage=self.stage,
            decision_date=self.decision_date,
            decision_timestamp=self.decision_timestamp,
        )
        return data


def parse_case_list_item(raw: Any) -> CaseSummary:
    """Summary of an item from the upstream term listing"""
    raw = _as_dict(raw)
    name = _text(raw.get("name")) or "Unknown Case"
    first, second = split_party_names(name)
    timeline = parse_timeline(raw.get("timeline"))
    formatted, timestamp = decision_date(timeline)
    decided = any(t.event == DECIDED_EVENT for t in timeline)
    term = _text(raw.get("term")) or ""
    docket = _text(raw.get("docket_number")) or ""
    return CaseSummary(
        id=f"{term}-{docket}",
        name=name,
        first_party=first,
        second_party=second,
        docket_number=docket,
        term=term,
        decision_date=formatted,
        decision_timestamp=timestamp,
        majority_votes=None,
        minority_votes=None,
        is_decided=decided,
        stage=derive_stage(decided, timeline),
        decision_type="",
        description=strip_html(raw.get("description")),
        href=_text(raw.get("href")) or "",
    )


def parse_case_detail(raw: Any, term: Optional[str] = None,
                      docket_number: Optional[str] = None) -> CaseDetail:
    """Build a CaseDetail from an upstream detail payload or a stored row.

    ``term`` and ``docket_number``, when given, take precedence over the
    payload's own values.
    """
    raw = _as_dict(raw)
    name = _text(raw.get("name")) or "Unknown Case"
    first = _text(raw.get("first_party"))
    second = _text(raw.get("second_party"))
    if not first and not second:
        first, second = split_party_names(name)
    fetched_at = raw.get("fetched_at")
    return CaseDetail(
        term=term or _text(raw.get("term")) or "",
        docket_number=docket_number or _text(raw.get("docket_number")) or "",
        name=name,
        first_party=first or "",
        second_party=second or "",
        description=_text(raw.get("description")),
        facts_of_the_case=_text(raw.get("facts_of_the_case")),
        question=_text(raw.get("question")),
        conclusion=_text(raw.get("conclusion")),
        citation=Citation.from_json(raw.get("citation")),
        justia_url=_text(raw.get("justia_url")),
        href=_text(raw.get("href")) or "",
        decisions=parse_decisions(raw.get("decisions")),
        advocates=[a for a in map(Advocate.from_json, _as_list(raw.get("advocates"))) if a],
        written_opinion=[
            o for o in map(WrittenOpinion.from_json, _as_list(raw.get("written_opinion"))) if o
        ],
        timeline=parse_timeline(raw.get("timeline")),
        fetched_at=fetched_at if isinstance(fetched_at, datetime) else None,
    )


# Stored rows use the upstream field names for their columns
case_detail_from_row = parse_case_detail


def case_summary_from_row(row: Dict[str, Any]) -> CaseSummary:
    return case_detail_from_row(row).summary()


@dataclass
class Justice:
    identifier: str
    name: str
    last_name: str
    role_title: Optional[str] = None
    appointing_president: Optional[str] = None
    date_start: Optional[int] = None
    date_end: int = 0
    home_state: Optional[str] = None
    law_school: Optional[str] = None
    thumbnail_url: Optional[str] = None

    @property
    def is_chief(self) -> bool:
        return "Chief" in (self.role_title or "")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def parse_justice(raw: Any, identifier: str) -> Justice:
    """Build a Justice from an upstream /people/{identifier} payload"""
    raw = _as_dict(raw)
    roles = [_as_dict(r) for r in _as_list(raw.get("roles"))]
    role = next((r for r in roles if "Justice" in (_text(r.get("role_title")) or "")), {})
    date_end = _as_int(role.get("date_end"))
    return Justice(
        identifier=identifier,
        name=_text(raw.get("name")) or identifier,
        last_name=_text(raw.get("last_name")) or identifier,
        role_title=_text(role.get("role_title")),
        appointing_president=_text(role.get("appointing_president")),
        date_start=_as_int(role.get("date_start")) or None,
        date_end=date_end if date_end is not None else 0,
        home_state=_text(raw.get("home_state")),
        law_school=_text(raw.get("law_school")),
        thumbnail_url=_text(_as_dict(raw.get("thumbnail")).get("href")),
    )


def justice_from_row(row: Dict[str, Any]) -> Justice:
    return Justice(
        identifier=row["identifier"],
        name=row.get("name") or row["identifier"],
        last_name=row.get("last_name") or row["identifier"],
        role_title=row.get("role_title"),
        appointing_president=row.get("appointing_president"),
        date_start=_as_int(row.get("date_start")),
        date_end=_as_int(row.get("date_end")) or 0,
        home_state=row.get("home_state"),
        law_school=row.get("law_school"),
        thumbnail_url=row.get("thumbnail_url"),
    )


@dataclass
class CaseReference:
    """A case as listed on a justice's profile"""
    term: str
    docket_number: str
    case_name: str
    description: str
    opinion_type: Optional[str] = None


@dataclass
class Alignment:
    identifier: str
    justice_name: str
    agreed: int
    total: int
    rate: float


@dataclass
class JusticeRecord:
    """A justice with voting counters for one term (or a whole career)"""
    justice: Justice
    majority_count: int = 0
    dissent_count: int = 0
    authored_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class JusticeProfile:
    record: JusticeRecord
    opinions: List[CaseReference] = field(default_factory=list)
    dissents: List[CaseReference] = field(default_factory=list)
    alignments: List[Alignment] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ConstitutionSection:
    article: str
    article_title: str
    text: str
    section_number: Optional[int] = None
    section_title: Optional[str] = None
    sort_order: int = 0

    @classmethod
    def from_json(cls, raw: Any) -> Optional["ConstitutionSection"]:
        raw = _as_dict(raw)
        article = _text(raw.get("article"))
        text = _text(raw.get("text"))
        if not article or not text:
            return None
        return cls(
            article=article,
            article_title=_text(raw.get("article_title")) or article,
            text=text,
            section_number=_as_int(raw.get("section_number")),
            section_title=_text(raw.get("section_title")),
            sort_order=_as_int(raw.get("sort_order")) or 0,
        )

    @property
    def is_amendment(self) -> bool:
        return self.article.startswith("Amdt.")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
