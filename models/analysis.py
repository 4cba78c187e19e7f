"""
Enums and column profiles shared by type inference, validation and domain analysis.
"""

from enum import Enum

from pydantic import Field

from models.base import BaseSchema


class DataType(str, Enum):
    """Column data types recognized by the inference engine."""
    CPF = "cpf"
    CNPJ = "cnpj"
    RG = "rg"
    CEP = "cep"
    TELEFONE = "telefone"
    CELULAR = "celular"
    EMAIL = "email"
    URL = "url"
    DATA_BRASILEIRA = "data_brasileira"
    DATA_ISO = "data_iso"
    DATETIME = "datetime"
    HORA = "hora"
    MOEDA_REAL = "moeda_real"
    NUMERO_DECIMAL = "numero_decimal"
    NUMERO_INTEIRO = "numero_inteiro"
    PERCENTUAL = "percentual"
    CODIGO_BANCO = "codigo_banco"
    AGENCIA = "agencia"
    CONTA_CORRENTE = "conta_corrente"
    PIX_KEY = "pix_key"
    TRANSACTION_ID = "transaction_id"
    UUID = "uuid"
    BOOLEAN_PTBR = "boolean_ptbr"
    BOOLEAN_EN = "boolean_en"
    ENUM = "enum"
    TEXTO_LIVRE = "texto_livre"
    CODIGO_PRODUTO = "codigo_produto"
    PLACA_VEICULO = "placa_veiculo"


class Domain(str, Enum):
    """Business domains a dataset can be classified into."""
    FINANCEIRO = "financeiro"
    TRANSACIONAL = "transacional"
    CADASTRAL = "cadastral"
    ECOMMERCE = "ecommerce"
    LOGISTICO = "logistico"
    RH_PESSOAL = "rh_pessoal"
    MARKETING = "marketing"
    SAUDE = "saude"
    EDUCACIONAL = "educacional"
    IMOBILIARIO = "imobiliario"
    AUTOMOTIVO = "automotivo"
    GOVERNO = "governo"
    GENERICO = "generico"


class ColumnKind(str, Enum):
    """Coarse column types produced by the CSV column analyzer."""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    EMAIL = "email"
    PHONE = "phone"
    CPF = "cpf"
    CNPJ = "cnpj"
    CURRENCY = "currency"
    ID = "id"


class ColumnProfile(BaseSchema):
    """
    Column summary fed to domain analysis and schema generation.

    Built from the CSV column analysis plus the inferred data type.
    """
    name: str = Field(..., min_length=1, description="Column header")
    type: DataType = Field(DataType.TEXTO_LIVRE, description="Inferred data type")
    nullable: bool = Field(False, description="Whether empty values were seen")
    unique: bool = Field(False, description="Whether sample values are all distinct")
    confidence: float = Field(0.0, ge=0, le=1, description="Inference confidence")
    sample_values: list[str] = Field(default_factory=list, description="Non-empty sample values")
