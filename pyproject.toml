[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dae"
version = "0.1.0"
description = "Building blocks and control commands for a transparent proxy: constants, DNS upstream handling, subscriptions, asset lookup and system dumps."
requires-python = ">=3.10"
keywords = ["proxy", "transparent-proxy", "dns", "subscription", "networking"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
    "Topic :: Internet :: Name Service (DNS)",
]
dependencies = [
    "dnspython",
    "cryptography",
    "requests",
    "psutil",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[project.scripts]
dae = "dae.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["dae"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
