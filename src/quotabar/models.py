import enum
from dataclasses import dataclass, field
from typing import Any


class BillingKind(str, enum.Enum):
    """
    BillingKind categorizes how a provider bills its usage.
    """

    QUOTA_BASED = "quota-based"
    TOKENS_BASED = "tokens-based"
    PAY_AS_YOU_GO = "pay-as-you-go"


class Confidence(str, enum.Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


@dataclass(frozen=True, slots=True)
class DailyUsage:
    """
    DailyUsage is one day of consumption for a provider.
    The unit of included_requests depends on the backend
    (premium requests, tokens, ...).
    """

    # ISO calendar day, e.g. "2024-01-31"
    date: "str"
    included_requests: "float"
    billed_amount: "float | None" = None

    def to_dict(self) -> "dict[str, Any]":
        data: "dict[str, Any]" = {
            "date": self.date,
            "includedRequests": self.included_requests,
        }
        if self.billed_amount is not None:
            data["billedAmount"] = self.billed_amount
        return data

    @classmethod
    def from_dict(cls, data: "dict[str, Any]") -> "DailyUsage":
        return cls(
            date=data["date"],
            included_requests=float(data.get("includedRequests", 0.0)),
            billed_amount=data.get("billedAmount"),
        )


@dataclass(frozen=True, slots=True)
class Forecast:
    """
    Forecast holds the projected month-end usage. Numeric fields
    stay None when the history was too short to project from.
    """

    confidence: "Confidence"
    predicted_monthly_usage: "float | None" = None
    predicted_extra_cost: "float | None" = None

    def to_dict(self) -> "dict[str, Any]":
        data: "dict[str, Any]" = {"confidence": self.confidence.value}
        if self.predicted_monthly_usage is not None:
            data["predictedMonthlyUsage"] = self.predicted_monthly_usage
        if self.predicted_extra_cost is not None:
            data["predictedExtraCost"] = self.predicted_extra_cost
        return data

    @classmethod
    def from_dict(cls, data: "dict[str, Any]") -> "Forecast":
        return cls(
            confidence=Confidence(data["confidence"]),
            predicted_monthly_usage=data.get("predictedMonthlyUsage"),
            predicted_extra_cost=data.get("predictedExtraCost"),
        )


@dataclass(frozen=True, slots=True)
class SubAccount:
    """
    SubAccount is one identity behind a provider that multiplexes
    several credential sets.
    """

    # zero-based, stable within one fetch
    index: "int"
    # display string, may embed a reset countdown
    label: "str"
    remaining: "int"
    entitlement: "int"
    remaining_percent: "int"
    model_breakdown: "dict[str, int] | None" = None

    def to_dict(self) -> "dict[str, Any]":
        data: "dict[str, Any]" = {
            "index": self.index,
            "label": self.label,
            "remaining": self.remaining,
            "entitlement": self.entitlement,
            "remainingPercent": self.remaining_percent,
        }
        if self.model_breakdown:
            data["modelBreakdown"] = dict(self.model_breakdown)
        return data

    @classmethod
    def from_dict(cls, data: "dict[str, Any]") -> "SubAccount":
        return cls(
            index=data["index"],
            label=data["label"],
            remaining=data["remaining"],
            entitlement=data["entitlement"],
            remaining_percent=data["remainingPercent"],
            model_breakdown=data.get("modelBreakdown"),
        )


# metric field groups per billing kind, used to enforce that a report
# only carries the fields of its own kind
_KIND_FIELDS: "dict[BillingKind, tuple[str, ...]]" = {
    BillingKind.QUOTA_BASED: (
        "remaining",
        "entitlement",
        "usage_percent",
        "overage_permitted",
    ),
    BillingKind.TOKENS_BASED: ("tokens_used",),
    BillingKind.PAY_AS_YOU_GO: ("cost",),
}

# (attribute, json key) pairs for the scalar optional fields
_SCALAR_FIELDS: "tuple[tuple[str, str], ...]" = (
    ("remaining", "remaining"),
    ("entitlement", "entitlement"),
    ("usage_percent", "usagePercent"),
    ("refresh_label", "refreshLabel"),
    ("overage_permitted", "overagePermitted"),
    ("tokens_used", "tokensUsed"),
    ("cost", "cost"),
    ("error", "error"),
)


@dataclass(frozen=True, slots=True)
class UsageReport:
    """
    UsageReport is one backend's normalized result. Only the
    metric fields of billing_kind may be populated; a report
    carrying an error has no metrics at all.
    """

    name: "str"
    billing_kind: "BillingKind"

    # quota-based
    remaining: "int | None" = None
    entitlement: "int | None" = None
    usage_percent: "int | None" = None
    overage_permitted: "bool | None" = None
    # quota-based and tokens-based
    refresh_label: "str | None" = None

    # tokens-based
    tokens_used: "int | None" = None

    # pay-as-you-go
    cost: "float | None" = None

    accounts: "list[SubAccount]" = field(default_factory=list)
    # non-fatal fetch failure
    error: "str | None" = None
    history: "list[DailyUsage]" = field(default_factory=list)
    forecast: "Forecast | None" = None

    def __post_init__(self) -> "None":
        for kind, names in _KIND_FIELDS.items():
            if kind == self.billing_kind:
                continue
            populated = [n for n in names if getattr(self, n) is not None]
            if populated:
                raise ValueError(
                    f"{self.billing_kind.value} report {self.name!r} "
                    f"cannot carry {kind.value} fields: {', '.join(populated)}"
                )

        if self.error is not None:
            metrics = [
                n
                for names in _KIND_FIELDS.values()
                for n in names
                if getattr(self, n) is not None
            ]
            if metrics or self.accounts:
                raise ValueError(
                    f"report {self.name!r} carries an error and metrics"
                )

    @classmethod
    def failed(
        cls, name: "str", billing_kind: "BillingKind", error: "str"
    ) -> "UsageReport":
        """
        builds the report shape used for a provider whose fetch failed.
        """
        return cls(name=name, billing_kind=billing_kind, error=error)

    @property
    def ok(self) -> "bool":
        return self.error is None

    def to_dict(self) -> "dict[str, Any]":
        """
        serializes the report with camelCase keys, leaving out
        every field that was never populated.
        """
        data: "dict[str, Any]" = {
            "name": self.name,
            "billingKind": self.billing_kind.value,
        }
        for attr, key in _SCALAR_FIELDS:
            value = getattr(self, attr)
            if value is not None:
                data[key] = value

        if self.accounts:
            data["accounts"] = [a.to_dict() for a in self.accounts]
        if self.history:
            data["history"] = [d.to_dict() for d in self.history]
        if self.forecast is not None:
            data["forecast"] = self.forecast.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: "dict[str, Any]") -> "UsageReport":
        kwargs: "dict[str, Any]" = {
            attr: data[key] for attr, key in _SCALAR_FIELDS if key in data
        }
        forecast = data.get("forecast")
        return cls(
            name=data["name"],
            billing_kind=BillingKind(data["billingKind"]),
            accounts=[SubAccount.from_dict(a) for a in data.get("accounts", [])],
            history=[DailyUsage.from_dict(d) for d in data.get("history", [])],
            forecast=Forecast.from_dict(forecast) if forecast else None,
            **kwargs,
        )
