import setuptools

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setuptools.setup(
    name="fleet_hygiene",
    version="0.0.1",
    description="cordons unhealthy cluster hosts and retires them once drained",
    long_description=long_description,
    long_description_content_type="text/markdown",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    package_dir={"": "."},
    packages=setuptools.find_packages(where=".", exclude=["tests", "tests.*"]),
    scripts=["retire_hosts.py"],
    python_requires=">=3.8",
    install_requires=[
        "boto3",
        "botocore",
        "colorama",
        "natsort",
        "pendulum",
        "requests",
        "sentry-sdk",
        "tomlkit",
        "urllib3",
    ],
    extras_require={
        "test": ["pytest"],
    },
)
