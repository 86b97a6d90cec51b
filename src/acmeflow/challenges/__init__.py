"""ACME challenge computations and the publisher interface."""

from acmeflow.challenges.base import ChallengePublisher
from acmeflow.challenges.dns01 import (
    compute_dns_txt_value,
    compute_key_authorization,
    dns_record_name,
)
from acmeflow.challenges.http01 import http_resource_path
from acmeflow.challenges.tls_alpn01 import acme_identifier_value, build_validation_certificate

__all__ = [
    "ChallengePublisher",
    "acme_identifier_value",
    "build_validation_certificate",
    "compute_dns_txt_value",
    "compute_key_authorization",
    "dns_record_name",
    "http_resource_path",
]
