#!/usr/bin/env python
from setuptools import setup, find_packages

with open("README.md", "r", encoding='utf-8') as fh:
    long_description = fh.read()

setup(
    name="shipfish",
    version="1.0.0",
    description="Deploy, roll back and inspect AWS ECS services",
    long_description=long_description,
    long_description_content_type="text/markdown",
    keywords=['aws', 'ecs', 'docker', 'devops', 'deployment'],
    classifiers=[
       "Programming Language :: Python :: 3"
    ],
    packages=find_packages(),
    include_package_data=True,
    python_requires=">=3.8",
    install_requires=[
        "boto3 >= 1.17",
        "cement>=3.0.0",
        "click >= 6.7",
        "colorlog",
        "jsondiff2 >= 1.2.3",
        "PyYAML >= 5.1",
        "shellescape >= 3.8.1",
        "tabulate >= 0.8.1",
        "tzlocal >= 4.0.1",
    ],
    extras_require={
        'test': [
            "mock",
            "pytest",
            "testfixtures",
        ],
    },
    entry_points={'console_scripts': [
        'shipfish = shipfish.main:main',
        'ship = shipfish.main:main'
    ]}
)
