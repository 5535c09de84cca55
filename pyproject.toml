[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "bcvkit"
version = "0.1.0"
description = "Libvirt domain XML, volume listing and disk upload helpers for bootc container images"
requires-python = ">=3.10"
dependencies = [
    "tabulate",
]
keywords = ["bootc", "libvirt", "virsh", "qemu", "podman", "virtual-machine", "containers"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Emulators",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
bcvkit = "bcvkit.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["bcvkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
