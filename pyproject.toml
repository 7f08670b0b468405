[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "agentcheck"
version = "0.1.0"
description = "Helpers for validating a metrics and logs agent end to end: cloud service checks, agent control and load generation."
requires-python = ">=3.10"
dependencies = [
    "jsonschema",
]
keywords = [
    "cloudwatch",
    "agent",
    "integration-testing",
    "metrics",
    "logs",
    "statsd",
    "collectd",
    "emf",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Testing",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["agentcheck"]

[tool.hatch.build.targets.sdist]
include = [
    "agentcheck",
    "tests",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
