from setuptools import setup


setup(
    name="placement-desk",
    version="0.3.0",
    description="Placement cell records: fuzzy spreadsheet import, grid editing, filtering and Excel export",
    packages=["placement_desk"],
    include_package_data=True,
    install_requires=[
        "pandas",
        "chardet",
        "openpyxl",
        "streamlit",
        "supabase",
        "httpx",
    ],
    extras_require={
        "excel-legacy": ["xlrd"],
        "all": ["xlrd"],
    },
    entry_points={
        "console_scripts": [
            "placement-desk=placement_desk.cli:main",
        ]
    },
)
