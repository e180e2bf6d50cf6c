import pandas as pd
import pytest

from ncf_importer.core.catalog import CatalogProvider, FileCatalogProvider, parse_product_list


def test_file_catalog_reads_csv_exports(tmp_path):
    products = tmp_path / "productos.csv"
    products.write_text(
        "Código,Nombre,Comisión\n10,Plexgrip Jarabe,30\n11,Vitamina C,\n,Sin codigo,10\n",
        encoding="utf-8",
    )
    clients = tmp_path / "clientes.csv"
    clients.write_text("id,nombre\n1,Farmacia Central\n2,Farmacia Norte\n", encoding="utf-8")

    provider = FileCatalogProvider(products, clients)

    loaded = provider.products()
    assert [(product.id, product.name, product.percentage) for product in loaded] == [
        ("10", "Plexgrip Jarabe", 30.0),
        ("11", "Vitamina C", 0.0),
    ]
    assert [client.name for client in provider.clients()] == ["Farmacia Central", "Farmacia Norte"]


def test_file_catalog_reads_excel(tmp_path):
    path = tmp_path / "productos.xlsx"
    pd.DataFrame({"Codigo": ["A1"], "Producto": ["Acetaminofen 500mg"], "Porcentaje": ["12,5"]}).to_excel(
        path, index=False
    )
    product = FileCatalogProvider(path).products()[0]
    assert product.id == "A1"
    assert product.percentage == 12.5


def test_missing_catalogue_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        FileCatalogProvider(tmp_path / "missing.csv").products()
    assert FileCatalogProvider(None).clients() == []


def test_parse_product_list_flags_duplicates_and_existing():
    text = "Producto\nPlexgrip Jarabe\nNuevo Jarabe\n\nnuevo  JARABE\n"
    parsed = parse_product_list(text, ["PLEXGRIP JARABE"], default_percentage=25.0)

    assert [entry.name for entry in parsed] == ["Plexgrip Jarabe", "Nuevo Jarabe", "nuevo  JARABE"]
    assert [entry.is_new for entry in parsed] == [False, True, False]
    assert parsed[2].error == "Duplicado en el archivo"
    assert parsed[2].line_number == 5
    assert all(entry.percentage == 25.0 for entry in parsed)


def test_catalog_provider_requires_both_sources():
    class ProductsOnly(CatalogProvider):
        def products(self):
            return []

    with pytest.raises(TypeError):
        ProductsOnly()
