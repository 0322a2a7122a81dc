"""
Agency Portal - Notice Generator
Renders the statutory notices served on a provider as plain text.

Notices issued:
- SUS       Notice of suspension (Regulation 6)
- WRN       Warning notice to improve (Statement of Purpose, Section 10)
- CANC-INT  Notice of intention to cancel (Regulation 4(2))
- SUS-EXT   Notice of extension of suspension (Regulation 7(3))
- SUS-LIFT  Notice of lifting of suspension (Regulation 8)
- DEC-CANC  Decision notice (Regulation 4(4))
"""
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

from .deadlines import format_date, generate_reference_number

AGENCY_NAME = "Ready Kids Agency"
AGENCY_UNIT = "Regulatory Compliance Unit"
REGULATIONS_TITLE = "The Childcare (Childminder Agencies) (Cancellation etc.) Regulations 2014"

# Wording used in the body of a notice of intention
GROUND_NOTICE_WORDING = {
    "mandatory_dq": "Disqualification from registration",
    "requirements": "Failure to satisfy prescribed requirements",
    "conditions": "Failure to comply with conditions of registration",
    "fees": "Failure to pay prescribed fees",
    "suitability": "Suitability concerns",
}


@dataclass
class NoticePreview:
    """A rendered notice, ready to show or persist."""
    notice_type: str
    reference_number: str
    issue_date: date
    title: str
    content: str
    key_dates: Dict[str, date] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "notice_type": self.notice_type,
            "reference_number": self.reference_number,
            "issue_date": self.issue_date.isoformat(),
            "title": self.title,
            "content": self.content,
            "key_dates": {k: v.isoformat() for k, v in self.key_dates.items()},
        }


class NoticeGenerator:
    """
    Builds notice text from a provider record and captured workflow input.
    """

    def __init__(self, provider, supervisor_name: Optional[str], today: Optional[date] = None):
        self.provider = provider
        self.supervisor_name = supervisor_name or "[SUPERVISOR]"
        self.today = today or date.today()

    # =========================================================================
    # NOTICES
    # =========================================================================

    def suspension_notice(self, concern: str, risk_detail: str, review_deadline: date) -> NoticePreview:
        reference = self._reference("SUS")
        body = f"""NOTICE OF SUSPENSION OF REGISTRATION
{REGULATIONS_TITLE}

Dear {self.provider.full_name},

This notice confirms that {AGENCY_NAME} has decided to suspend your registration with immediate effect, starting from today, {format_date(self.today)}.

REASONS FOR SUSPENSION
{'-' * 50}

In accordance with Regulation 6, the Agency reasonably believes that the continued provision of childcare by you may expose a child to a risk of harm. Specifically:

"{concern} - {risk_detail}"

INITIAL PERIOD AND REVIEW
{'-' * 50}

The initial period of this suspension is six weeks, ending on {format_date(review_deadline)}.

PROHIBITION ON CHILDCARE
{'-' * 50}

During this period of suspension, you must not provide any childcare that is required to be registered with the agency.

WARNING: Operating while suspended is an offence.

RIGHT OF APPEAL
{'-' * 50}

You have a statutory right of appeal against this decision to the First-tier Tribunal within 10 working days."""

        return self._assemble(
            "SUS", reference, "SUSPENSION NOTICE", body,
            {"review_deadline": review_deadline},
        )

    def warning_notice(
        self,
        warning_type: str,
        breach_details: str,
        required_actions: str,
        compliance_days: int,
        compliance_date: date,
        monitoring_method: str,
        representations_deadline: date,
    ) -> NoticePreview:
        reference = self._reference("WRN")
        heading = (
            "WELFARE REQUIREMENTS WARNING NOTICE" if warning_type == "welfare"
            else "WARNING NOTICE TO IMPROVE"
        )
        if monitoring_method == "visit":
            monitoring = ("schedule a follow-up visit as soon as practicable after the completion date "
                          "(typically within five working days).")
        else:
            monitoring = "review documentary evidence submitted by you."

        body = f"""{heading}
{AGENCY_NAME} Statement of Purpose - Section 10

Dear {self.provider.full_name},

Following our regulatory contact on {format_date(self.today)}, we have identified that you have failed, or are failing, to comply with one or more requirements of the Early Years Foundation Stage (EYFS) or Agency standards.

SPECIFIC REQUIREMENTS NOT MET
{'-' * 50}

{breach_details}

ACTIONS REQUIRED
{'-' * 50}

You must take the following actions to become compliant:

{required_actions}

TIMESCALES AND MONITORING
{'-' * 50}

You must complete these actions by {format_date(compliance_date)} (Timescale: {compliance_days} days).

To monitor compliance, {AGENCY_NAME} will {monitoring}

FAILURE TO COMPLY
{'-' * 50}

Failure to comply with this notice may result in escalation to stronger enforcement action, including variation of conditions, suspension, or cancellation of your registration.

REPRESENTATIONS
{'-' * 50}

If you believe this notice is factually inaccurate or disproportionate, you may make written representations to {AGENCY_NAME} within 5 working days (by {format_date(representations_deadline)})."""

        return self._assemble(
            "WRN", reference, "NOTICE TO IMPROVE", body,
            {"compliance_date": compliance_date, "representations_deadline": representations_deadline},
        )

    def cancellation_intention(
        self,
        grounds: List[str],
        evidence_summary: str,
        rep_period: int,
        representations_deadline: date,
        earliest_decision: date,
        earliest_effect: date,
    ) -> NoticePreview:
        reference = self._reference("CANC-INT")
        ground_lines = "\n".join(
            f"    - {GROUND_NOTICE_WORDING.get(g, g)}"
            for g in grounds
        )
        register = self.provider.service_type or "Childcare"

        body = f"""NOTICE OF INTENTION TO CANCEL REGISTRATION
Regulation 4 of {REGULATIONS_TITLE}

Dear {self.provider.full_name},

I am writing to inform you that {AGENCY_NAME} intends to cancel your registration as a childminder on the {register} Register.

REASONS FOR INTENTION
{'-' * 50}

This action is being taken in accordance with Regulation 3 on the following grounds:

{ground_lines}

"{evidence_summary}"

RIGHT TO MAKE REPRESENTATIONS
{'-' * 50}

In accordance with Regulation 4(2)(c), you may make representations to the Agency regarding this proposal.

Any such representations must be made within {rep_period} days of the date of this notice (by {format_date(representations_deadline)}).

NEXT STEPS
{'-' * 50}

If, after considering any representations, we decide to proceed with the cancellation, we will issue a Decision Notice. That notice will explain the options available to you.

Please note: You remain registered until a final decision takes effect. However, you must continue to comply with all regulatory requirements."""

        return self._assemble(
            "CANC-INT", reference, "NOTICE OF INTENTION", body,
            {
                "representations_deadline": representations_deadline,
                "earliest_decision": earliest_decision,
                "earliest_effect": earliest_effect,
            },
        )

    def suspension_extended(
        self,
        investigation_status: str,
        extension_weeks: int,
        new_deadline: date,
    ) -> NoticePreview:
        reference = self._reference("SUS-EXT")
        body = f"""NOTICE OF EXTENSION OF SUSPENSION
Regulation 7(3) of {REGULATIONS_TITLE}

Dear {self.provider.full_name},

I am writing to inform you that {AGENCY_NAME} has reviewed your suspension. We have determined that it is necessary to extend the period of suspension.

REASON FOR EXTENSION
{'-' * 50}

{investigation_status}

Therefore, the investigation has not yet concluded / necessary steps have not yet been taken to remove the risk of harm.

This extension is for a further period of {extension_weeks} weeks. The suspension will now remain in force until {format_date(new_deadline)}, unless lifted earlier.

During this extended period, you must not provide any childcare that is required to be registered with the agency. Operating while suspended remains an offence."""

        return self._assemble(
            "SUS-EXT", reference, "SUSPENSION EXTENDED", body,
            {"new_deadline": new_deadline},
        )

    def suspension_lifted(self, lift_conditions: Optional[str] = None) -> NoticePreview:
        reference = self._reference("SUS-LIFT")
        parts = [f"""NOTICE OF LIFTING OF SUSPENSION
Regulation 8 of {REGULATIONS_TITLE}

Dear {self.provider.full_name},

I am writing to inform you that {AGENCY_NAME} has reviewed your suspension. We are satisfied that the circumstances that gave rise to the risk of harm no longer exist.

The suspension of your registration is therefore lifted with immediate effect. You may resume providing childcare as an agency-registered childminder from {format_date(self.today)}."""]

        if lift_conditions:
            parts.append(f"""CONDITIONS / REQUIREMENTS
{'-' * 50}

{lift_conditions}""")

        parts.append("We have informed Ofsted and the Local Authority that your suspension has been lifted.")

        return self._assemble(
            "SUS-LIFT", reference, "SUSPENSION LIFTED", "\n\n".join(parts),
            {"lifted_on": self.today},
        )

    def decision_notice(
        self,
        reps_received: bool,
        reps_summary: Optional[str],
        reps_outcome: Optional[str],
        effect_date: date,
    ) -> NoticePreview:
        reference = self._reference("DEC-CANC")

        if reps_received:
            prefix = ""
            if reps_outcome == "rejected":
                prefix = "The representations do not sufficiently mitigate the grounds for cancellation. "
            representations = f"""We received your representations. Having carefully considered the points raised, we have concluded that:

"{prefix}{reps_summary or ''}"

Therefore, the decision to cancel is upheld."""
        else:
            representations = (
                "No representations were received within the statutory period stated in the Notice of Intention."
            )

        body = f"""NOTICE OF DECISION TO CANCEL REGISTRATION
Regulation 4(4) of {REGULATIONS_TITLE}

Dear {self.provider.full_name},

Further to the Notice of Intention served on you, and after considering all available information, {AGENCY_NAME} has decided to cancel your registration.

CONSIDERATION OF REPRESENTATIONS
{'-' * 50}

{representations}

EFFECT OF DECISION
{'-' * 50}

In accordance with Regulation 4(6), this cancellation will take effect on {format_date(effect_date)} (28 days from the date of this notice).

OPTIONS FOLLOWING CANCELLATION
{'-' * 50}

There is no statutory right of appeal to the First-tier Tribunal against a childminder agency's decision to cancel a provider's registration.

However, you may seek registration with Ofsted or another childminder agency, subject to meeting their relevant requirements and not being disqualified.

If you disagree with the way in which {AGENCY_NAME} has reached or implemented this decision, you may use the Agency's formal complaints procedure."""

        return self._assemble(
            "DEC-CANC", reference, "DECISION NOTICE", body,
            {"effect_date": effect_date},
        )

    # =========================================================================
    # LAYOUT
    # =========================================================================

    def _reference(self, prefix: str) -> str:
        return generate_reference_number(prefix, self.provider.id, self.today.year)

    def _assemble(
        self,
        notice_type: str,
        reference: str,
        title: str,
        body: str,
        key_dates: Dict[str, date],
    ) -> NoticePreview:
        letter_parts = [
            self._generate_header(reference),
            title,
            self._generate_address_block(),
            body,
            self._generate_closing(),
        ]
        return NoticePreview(
            notice_type=notice_type,
            reference_number=reference,
            issue_date=self.today,
            title=title,
            content="\n\n".join(filter(None, letter_parts)),
            key_dates=key_dates,
        )

    def _generate_header(self, reference: str) -> str:
        return f"""{AGENCY_NAME}
{AGENCY_UNIT}

Date: {format_date(self.today)}
Ref: {reference}"""

    def _generate_address_block(self) -> str:
        lines = [self.provider.full_name]
        for value in (
            self.provider.address_line1,
            self.provider.address_line2,
            self.provider.town_city,
            self.provider.postcode,
        ):
            if value:
                lines.append(value)
        return "\n".join(lines)

    def _generate_closing(self) -> str:
        return f"""{self.supervisor_name}
Authorised Manager, {AGENCY_NAME}"""
