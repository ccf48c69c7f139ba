"""popforge toolchain module.

Key classes:
    ToolchainRequirement - A required external tool and its minimum version
    ToolchainProfile     - Detected tool versions for one invocation
    ToolchainDetector    - Probes the host through the process runner
    UnmetToolchainError  - Aggregated report of every missing/outdated tool
"""

from .detector import ToolchainDetector, first_version_line, print_toolchain_table
from .models import (
    Deficiency,
    DeficiencyKind,
    ToolchainProfile,
    ToolchainRequirement,
    ToolStatus,
    UnmetToolchainError,
    parse_version,
)
from .requirements import CONTRACT_REQUIREMENTS, PARACHAIN_REQUIREMENTS, requirements_for

__all__ = [
    "CONTRACT_REQUIREMENTS",
    "PARACHAIN_REQUIREMENTS",
    "Deficiency",
    "DeficiencyKind",
    "ToolStatus",
    "ToolchainDetector",
    "ToolchainProfile",
    "ToolchainRequirement",
    "UnmetToolchainError",
    "first_version_line",
    "parse_version",
    "print_toolchain_table",
    "requirements_for",
]
