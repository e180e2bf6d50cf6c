import argparse
import json

import pytest
import yaml

from ncf_importer.main import main, parse_assignment


def write_environment(tmp_path):
    products = tmp_path / "productos.csv"
    products.write_text("codigo,nombre,porcentaje\n10,Plexgrip Jarabe,30\n12,Acetaminofen 500mg,20\n", encoding="utf-8")
    clients = tmp_path / "clientes.csv"
    clients.write_text("codigo,nombre\n1,Farmacia Central\n2,Farmacia Norte\n", encoding="utf-8")
    config = {
        "paths": {
            "match_store_file": str(tmp_path / "data" / "matches.json"),
            "invoice_store_file": str(tmp_path / "data" / "invoices.json"),
            "output_folder": str(tmp_path / "output"),
            "log_folder": str(tmp_path / "logs"),
            "products_file": str(products),
            "clients_file": str(clients),
        }
    }
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.safe_dump(config), encoding="utf-8")
    source = tmp_path / "facturas.csv"
    source.write_text(
        "NCF_SUFFIX,FECHA,CLIENTE,PRODUCTO,CANTIDAD,PRECIO_UNITARIO\n"
        "2904,2024-01-15,Farmacia Central,Jarabe PLX,10,150\n"
        "2905,2024-01-16,Farmacia Norte,Acetaminofen 500mg,5,80\n",
        encoding="utf-8",
    )
    return config_path, source


def test_parse_assignment():
    assert parse_assignment("product: Jarabe PLX =10") == ("product", "Jarabe PLX", "10")
    with pytest.raises(argparse.ArgumentTypeError):
        parse_assignment("Jarabe PLX")
    with pytest.raises(argparse.ArgumentTypeError):
        parse_assignment("supplier:Jarabe=1")


def test_import_with_assignment_and_commit(tmp_path, capsys):
    config_path, source = write_environment(tmp_path)

    main(["--config", str(config_path), "import", str(source), "--assign", "product:Jarabe PLX=10", "--commit", "--report"])

    output = capsys.readouterr().out
    assert "Factura B0100002904: OK" in output
    invoices = json.loads((tmp_path / "data" / "invoices.json").read_text(encoding="utf-8"))["invoices"]
    assert [invoice["ncf"] for invoice in invoices] == ["B0100002904", "B0100002905"]
    assert list((tmp_path / "output").glob("revision_filas_*.csv"))
    assert list((tmp_path / "logs").glob("run_*.json"))

    main(["--config", str(config_path), "matches", "list"])
    assert "jarabe plx" in capsys.readouterr().out


def test_commit_refused_while_names_are_pending(tmp_path, capsys):
    config_path, source = write_environment(tmp_path)

    with pytest.raises(SystemExit) as excinfo:
        main(["--config", str(config_path), "import", str(source), "--commit"])

    assert excinfo.value.code == 1
    output = capsys.readouterr().out
    assert "Pendiente product: 'Jarabe PLX'" in output
    assert not (tmp_path / "data" / "invoices.json").exists()


def test_skip_unresolved_commits_the_rest(tmp_path):
    config_path, source = write_environment(tmp_path)

    main(["--config", str(config_path), "import", str(source), "--skip-unresolved", "--commit"])

    invoices = json.loads((tmp_path / "data" / "invoices.json").read_text(encoding="utf-8"))["invoices"]
    assert [invoice["ncf"] for invoice in invoices] == ["B0100002905"]


def test_template_and_products_commands(tmp_path, capsys):
    config_path, _ = write_environment(tmp_path)
    template = tmp_path / "template.csv"
    main(["template", str(template)])
    assert template.read_text(encoding="utf-8").startswith("NCF_SUFFIX")

    listing = tmp_path / "nuevos.csv"
    listing.write_text("Producto\nPlexgrip Jarabe\nLoratadina\nloratadina\n", encoding="utf-8")
    main(["--config", str(config_path), "products", str(listing)])
    output = capsys.readouterr().out
    assert "Productos nuevos: 1" in output
    assert "Duplicado en el archivo" in output


def test_missing_file_exits_with_error(tmp_path):
    config_path, _ = write_environment(tmp_path)
    with pytest.raises(SystemExit) as excinfo:
        main(["--config", str(config_path), "import", str(tmp_path / "missing.csv")])
    assert excinfo.value.code == 1
