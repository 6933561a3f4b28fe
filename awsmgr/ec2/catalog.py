# This file is part of awsmgr. See LICENSE file for license information.
"""Operating system and instance type menus for EC2."""

from typing import Dict, List, Optional

from awsmgr.types import AMIOption, InstanceTypeOption

ARCHITECTURES = ("x86_64", "arm64")

# Below this much memory a modern LLM (8B parameters and up) will not load.
AI_MIN_RAM_GB = 8.0

AMI_OPTIONS: List[AMIOption] = [
    AMIOption("Debian 12", "136693071363", "debian-12-*"),
    AMIOption("Debian 11", "136693071363", "debian-11-*"),
    AMIOption(
        "Ubuntu 24.04",
        "099720109477",
        "ubuntu/images/hvm-ssd-gp3/ubuntu-noble-24.04-*",
    ),
    AMIOption(
        "Ubuntu 22.04",
        "099720109477",
        "ubuntu/images/hvm-ssd/ubuntu-jammy-22.04-*",
    ),
    AMIOption("Amazon Linux 2023", "137112412989", "al2023-ami-2023.*"),
    AMIOption("Amazon Linux 2", "137112412989", "amzn2-ami-hvm-*"),
]

_LOW_RAM = "Too little memory to run a model"
_TINY_MODELS = "Only small quantized models fit"
_FEW_GB = "Limited memory"

INSTANCE_TYPES: Dict[str, List[InstanceTypeOption]] = {
    "x86_64": [
        InstanceTypeOption(
            "t2.micro", 1, 1.0, "$0.0116/h", "T2 free tier", _LOW_RAM
        ),
        InstanceTypeOption(
            "t3.micro", 2, 1.0, "$0.0104/h", "T3 free tier", _LOW_RAM
        ),
        InstanceTypeOption(
            "t3.medium", 2, 4.0, "$0.0416/h", "T3 general", _TINY_MODELS
        ),
        InstanceTypeOption("t3.xlarge", 4, 16.0, "$0.1664/h", "T3 general"),
        InstanceTypeOption(
            "c6i.large", 2, 4.0, "$0.0850/h", "Compute (AVX-512)", _FEW_GB
        ),
        InstanceTypeOption(
            "c6i.4xlarge", 16, 32.0, "$0.6800/h", "Compute (16 vCPU)"
        ),
        InstanceTypeOption(
            "c7i.large", 2, 4.0, "$0.0895/h", "Inference (AMX)", _FEW_GB
        ),
        InstanceTypeOption(
            "c7i.4xlarge", 16, 32.0, "$0.7160/h", "Inference (16 vCPU)"
        ),
        InstanceTypeOption(
            "m6i.large", 2, 8.0, "$0.0960/h", "General / inference"
        ),
        InstanceTypeOption(
            "m7i.large", 2, 8.0, "$0.1008/h", "General / inference (AMX)"
        ),
    ],
    "arm64": [
        InstanceTypeOption(
            "t4g.nano", 2, 0.5, "$0.0042/h", "Graviton2", _LOW_RAM
        ),
        InstanceTypeOption(
            "t4g.micro", 2, 1.0, "$0.0084/h", "T4g free trial", _LOW_RAM
        ),
        InstanceTypeOption(
            "t4g.medium", 2, 4.0, "$0.0336/h", "T4g general", _TINY_MODELS
        ),
        InstanceTypeOption(
            "c7g.large", 2, 4.0, "$0.0723/h", "Inference (BF16)", _FEW_GB
        ),
        InstanceTypeOption(
            "c7g.xlarge", 4, 8.0, "$0.1445/h", "Inference (BF16)"
        ),
        InstanceTypeOption(
            "c7g.4xlarge", 16, 32.0, "$0.5780/h", "Inference (16 vCPU)"
        ),
        InstanceTypeOption(
            "m7g.large", 2, 8.0, "$0.0816/h", "General / inference (BF16)"
        ),
    ],
}


def instance_types(arch: str) -> List[InstanceTypeOption]:
    """Return the instance type menu for ``arch``.

    Raises:
        ValueError: unknown architecture
    """
    try:
        return INSTANCE_TYPES[arch]
    except KeyError:
        raise ValueError(
            "Unknown architecture {}, expected one of {}".format(
                arch, ", ".join(ARCHITECTURES)
            )
        ) from None


def custom_instance_type(instance_type: str) -> InstanceTypeOption:
    """Describe an instance type typed in by hand.

    Nothing is known about it, so assume a small general purpose machine.
    """
    return InstanceTypeOption(instance_type, 2, 4.0)


def ai_suitability(option: InstanceTypeOption) -> Optional[str]:
    """Return why ``option`` is a poor fit for model inference, or None."""
    if option.ai_caveat:
        return option.ai_caveat
    if option.ram_gb < AI_MIN_RAM_GB:
        return (
            "{:.1f} GiB of memory; models such as Llama-3-8B need 8-16 GiB"
        ).format(option.ram_gb)
    return None
