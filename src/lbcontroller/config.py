"""Global configuration parsing."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Annotated, Self

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict
from safir.logging import LogLevel, Profile
from safir.pydantic import HumanTimedelta

from .constants import (
    CONFIGURATION_PATH,
    DEFAULT_LOAD_BALANCER_POLICY,
    DEFAULT_SHAPE,
    KNOWN_SHAPES,
    KUBERNETES_REQUEST_TIMEOUT,
)

__all__ = [
    "Config",
    "LoadBalancerConfig",
]


class LoadBalancerConfig(BaseModel):
    """Provider-level defaults for created load balancers."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    subnet1: Annotated[
        str,
        Field(
            title="First subnet",
            description=(
                "Subnet identifier used for new load balancers unless the"
                " service overrides it with an annotation"
            ),
            examples=["ocid1.subnet.oc1.phx.aaaaaaaa"],
        ),
    ]

    subnet2: Annotated[
        str,
        Field(
            title="Second subnet",
            description=(
                "Subnet identifier used for new load balancers unless the"
                " service overrides it with an annotation. Must be in a"
                " different availability domain than ``subnet1``."
            ),
            examples=["ocid1.subnet.oc1.phx.bbbbbbbb"],
        ),
    ]

    default_shape: Annotated[
        str,
        Field(
            title="Default shape",
            description="Shape used when the service does not request one",
            examples=["400Mbps"],
        ),
    ] = DEFAULT_SHAPE

    shapes: Annotated[
        list[str],
        Field(
            title="Known shapes",
            description=(
                "Shapes a service may request. Requests for any other shape"
                " are rejected before any call to the cloud provider."
            ),
        ),
    ] = list(KNOWN_SHAPES)

    policy: Annotated[
        str,
        Field(
            title="Backend set policy",
            description="Traffic distribution policy for new backend sets",
            examples=["LEAST_CONNECTIONS"],
        ),
    ] = DEFAULT_LOAD_BALANCER_POLICY

    @field_validator("shapes")
    @classmethod
    def _validate_shapes(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("At least one shape must be defined")
        return v

    @model_validator(mode="after")
    def _validate_default_shape(self) -> Self:
        if self.default_shape not in self.shapes:
            msg = f"Default shape {self.default_shape} is not a known shape"
            raise ValueError(msg)
        return self


class Config(BaseSettings):
    """Load balancer controller configuration."""

    model_config = SettingsConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    name: Annotated[
        str,
        Field(
            title="Name of application",
            description="Used when reporting problems to Slack",
        ),
    ] = "lbcontroller"

    log_level: Annotated[
        LogLevel,
        Field(
            title="Log level",
            description="Python logging level",
            examples=[LogLevel.INFO],
        ),
    ] = LogLevel.INFO

    profile: Annotated[
        Profile,
        Field(
            title="Application logging profile",
            description=(
                "``production`` uses JSON logging. ``development`` uses"
                " logging that may be easier for humans to read but that"
                " cannot be easily parsed by computers."
            ),
            examples=[Profile.development],
        ),
    ] = Profile.production

    slack_webhook: Annotated[
        SecretStr | None,
        Field(
            title="Slack webhook for alerts",
            description=(
                "If set, failures reconciling or deleting load balancers will"
                " be reported to Slack via this webhook"
            ),
            validation_alias="LBCONTROLLER_SLACK_WEBHOOK",
        ),
    ] = None

    kubernetes_request_timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Kubernetes request timeout",
            description="Timeout for individual Kubernetes API calls",
            examples=[30],
        ),
    ] = KUBERNETES_REQUEST_TIMEOUT

    load_balancer: Annotated[
        LoadBalancerConfig,
        Field(title="Load balancer defaults"),
    ]

    @field_validator("kubernetes_request_timeout")
    @classmethod
    def _validate_timeout(cls, v: timedelta) -> timedelta:
        if v.total_seconds() <= 0:
            raise ValueError("Kubernetes request timeout must be positive")
        return v

    @classmethod
    def from_file(cls, path: Path = CONFIGURATION_PATH) -> Self:
        """Load the controller configuration from a YAML file.

        Parameters
        ----------
        path
            Path to the configuration file.
        """
        with path.open("r") as f:
            return cls.model_validate(yaml.safe_load(f))
