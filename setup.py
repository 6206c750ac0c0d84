from setuptools import setup, find_packages

setup(
    name='dev-browser',
    version='0.1.0',
    description="A shared, named-page browser server with an allowlisted lockdown mode",
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        "playwright>=1.40",
        "fastapi>=0.100",
        "uvicorn>=0.23",
        "pydantic>=2.0",
        "click>=8.0",
        "httpx>=0.24",
        "pyyaml>=6.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
    entry_points={
        'console_scripts': [
            'dev-browser=dev_browser.cli:run',
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
    python_requires='>=3.9',
)
