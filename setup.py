from setuptools import setup, find_packages

setup(
    name="cmocka-runner-gen",
    version="1.0.0",
    description="Generate cmocka test runners from annotated C sources",
    keywords="cmocka c unit-test runner generator cmake",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "mkdocs>=1.4",
    ],
    extras_require={
        "test": ["pytest"],
    },
    classifiers = [
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: C",
        "Topic :: Software Development :: Code Generators",
        "Topic :: Software Development :: Testing",
    ],
    entry_points={
        "console_scripts": [
            "cmocka-runner-gen = cmocka_runner.generate:main",
        ],
    },
)
