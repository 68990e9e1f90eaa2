from setuptools import setup, find_packages

setup(
    name="llm_reviewer",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "requests",
        "pyyaml",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "llm-reviewer=llm_reviewer.cli:main",
        ],
    },
    description="Parse, score and apply code-review edit scripts from streaming LLMs.",
)
