[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ddnsallowlist"
version = "0.1.0"
description = "WSGI middleware that allows requests only from IP addresses resolved from dynamic DNS hostnames"
requires-python = ">=3.10"
dependencies = []
keywords = ["wsgi", "middleware", "allowlist", "ddns", "dns", "ip", "access-control"]
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
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Middleware",
    "Topic :: Security",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["ddnsallowlist"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
