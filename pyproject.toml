[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kedahttp"
version = "0.1.0"
description = "Building blocks for an HTTP scale-to-zero interceptor: routing, request counting, cold-start waiting, forwarding and HTTPScaledObject resources"
requires-python = ">=3.10"
dependencies = []
keywords = ["http", "proxy", "autoscaling", "scale-to-zero", "interceptor", "kubernetes"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["kedahttp"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
