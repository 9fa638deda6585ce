[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sdadapter"
version = "0.1.0"
description = "Translate Kubernetes custom, external and core metric queries into Cloud Monitoring time series requests and back."
requires-python = ">=3.10"
dependencies = []
keywords = ["kubernetes", "metrics", "monitoring", "stackdriver", "autoscaling", "custom-metrics"]
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
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["sdadapter"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
